# src/mystery_kb_rag/backend/utils/logging_.py

"""
[职责] 结构化日志：统一 logger 根名称、JSON 格式化与 trace 字段抽取，提供查询文本的安全预览/摘要 helper。
[边界] 不绑定具体日志后端；不强制 trace_id 注入；不记录完整用户查询或模型输出。
[上游关系] pipelines/services/api 通过 get_logger/log_event 写日志，传入 PipelineContext 或显式字段。
[下游关系] stdout JSON 日志供采集系统按 trace_id/session_id/stage 检索。
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


DEFAULT_LOGGER_NAME = "mystery_kb_rag"  # docstring: 统一 logger 根名称
DEFAULT_LOG_LEVEL = logging.INFO  # docstring: 默认日志级别
DEFAULT_MAX_TEXT_LEN = 160  # docstring: 安全文本预览长度

TRACE_FIELD_KEYS = (
    "trace_id",
    "request_id",
    "session_id",
)  # docstring: 推荐结构化日志字段

_LOG_RECORD_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "asctime",
    "taskName",
}  # docstring: LogRecord 内置字段（不作为结构化额外字段）


class StructuredLogFormatter(logging.Formatter):
    """
    [职责] 将 LogRecord 转换为 JSON 字符串（含结构化字段）。
    [边界] 仅输出基础字段 + extra；不做敏感字段识别。
    [上游关系] configure_logging 创建 handler 后挂载。
    [下游关系] 日志收集系统解析 JSON。
    """

    def __init__(self, *, ensure_ascii: bool = False) -> None:
        super().__init__()
        self._ensure_ascii = ensure_ascii  # docstring: 默认保留中文，便于排障阅读

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            k: v for k, v in record.__dict__.items() if k not in _LOG_RECORD_RESERVED and v is not None
        }  # docstring: 仅保留非空 extra 字段
        payload.update(extras)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        return json.dumps(payload, ensure_ascii=self._ensure_ascii, default=str)


def configure_logging(
    *,
    logger_name: str = DEFAULT_LOGGER_NAME,
    level: int = DEFAULT_LOG_LEVEL,
    ensure_ascii: bool = False,
) -> logging.Logger:
    """
    [职责] 配置统一的 base logger（JSON formatter）。
    [边界] 不触碰 root logger；重复调用不会重复挂载 handler。
    [上游关系] 应用入口 create_app 或首次 get_logger 时调用。
    [下游关系] get_logger 复用已配置的 base logger。
    """

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    has_handler = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "name", "") == "structured_json" for h in logger.handlers
    )
    if not has_handler:
        handler = logging.StreamHandler()
        handler.name = "structured_json"  # docstring: 标记 handler，避免重复挂载
        handler.setLevel(level)
        handler.setFormatter(StructuredLogFormatter(ensure_ascii=ensure_ascii))
        logger.addHandler(handler)

    logger.propagate = False  # docstring: 避免重复向 root 传播
    return logger


def get_logger(name: Optional[str] = None, *, level: Optional[int] = None) -> logging.Logger:
    """
    [职责] 获取项目统一 logger（自动确保 base logger 已配置）。
    [边界] 不覆写外部 logging 配置。
    [上游关系] services/pipelines/api 调用。
    [下游关系] 输出 JSON 结构化日志。
    """

    configure_logging()
    full_name = name or DEFAULT_LOGGER_NAME
    if name and not name.startswith(DEFAULT_LOGGER_NAME):
        full_name = f"{DEFAULT_LOGGER_NAME}.{name}"  # docstring: 统一挂载在项目根 logger 下
    logger = logging.getLogger(full_name)
    if level is not None:
        logger.setLevel(level)
    return logger


def build_log_fields(
    *,
    context: Optional[Any] = None,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    [职责] 统一构建结构化日志字段（trace/request/session ids + 扩展字段）。
    [边界] 不生成缺失 trace_id；不校验字段合法性。
    [上游关系] log_event 调用。
    [下游关系] logger.extra。
    """

    fields: Dict[str, Any] = {}
    if context is not None:
        fields.update(_extract_fields_from_context(context))

    explicit_fields = {
        "trace_id": trace_id,
        "request_id": request_id,
        "session_id": session_id,
    }
    for key, value in explicit_fields.items():
        if value is not None:
            fields[key] = str(value)

    if extra:
        for key, value in extra.items():
            if value is not None:
                fields[key] = value

    return fields


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    context: Optional[Any] = None,
    fields: Optional[Mapping[str, Any]] = None,
    exc_info: Optional[Any] = None,
) -> None:
    """
    [职责] 统一记录结构化日志（可自动附加 trace 字段）。
    [边界] 不处理业务语义。
    [上游关系] pipelines/services 在关键节点调用。
    [下游关系] StructuredLogFormatter 输出 JSON。
    """

    extra = build_log_fields(context=context, extra=fields)
    logger.log(level, message, extra=extra, exc_info=exc_info)


def truncate_text(text: Optional[str], *, max_len: int = DEFAULT_MAX_TEXT_LEN) -> Optional[str]:
    """截断长文本（避免记录原始输入全文）。"""

    if text is None:
        return None
    s = str(text)
    if len(s) <= max_len:
        return s
    return f"{s[:max_len]}...(truncated)"


def hash_text(text: Optional[str]) -> Optional[str]:
    """生成文本 sha256 摘要（用于日志去重/定位，不作为安全认证）。"""

    if text is None:
        return None
    s = str(text)
    if not s:
        return ""
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _extract_fields_from_context(context: Any) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key in TRACE_FIELD_KEYS:
        if isinstance(context, Mapping):
            value = context.get(key)
        else:
            value = getattr(context, key, None)
        if value is not None:
            fields[key] = str(value)
    return fields
