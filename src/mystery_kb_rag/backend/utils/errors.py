# src/mystery_kb_rag/backend/utils/errors.py

"""
[职责] 统一领域错误合同（error_code/message/detail/cause）与 HTTP 映射提示（http_status/retryable），覆盖模型调用、数据访问、结构化输出与截止时间等检索链路错误。
[边界] 不依赖 FastAPI；不记录日志；仅提供错误壳、错误分类与 to_http_error 映射。
[上游关系] pipelines/services/repos 抛出 DomainError 子类；第三方异常在适配边界处包装。
[下游关系] api/errors.py 将错误映射为 ErrorResponse；SSE 边界读取 message 生成 error 事件。
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional, Tuple


ErrorDetail = Dict[str, Any]  # docstring: 错误细节类型（必须 JSON-safe）

ERROR_CODE_PATTERN_AREA = re.compile(r"^[A-Z][A-Z0-9]*(?:__[A-Z0-9]+)+$")  # docstring: AREA__REASON 规范
ERROR_CODE_PATTERN_DOT = re.compile(r"^[a-z][a-z0-9]*(?:\.[a-z0-9_]+)+$")  # docstring: area.reason 规范

STANDARD_ERROR_CODES = {  # docstring: HTTP 层通用错误码集合
    "bad_request",
    "not_found",
    "upstream_model",
    "schema_mismatch",
    "data_access",
    "deadline_exceeded",
    "cancelled",
    "internal_error",
}

ERROR_HTTP_STATUS_BY_CODE = {  # docstring: 通用错误码 -> HTTP status
    "bad_request": 400,
    "not_found": 404,
    "upstream_model": 502,
    "schema_mismatch": 502,
    "data_access": 503,
    "deadline_exceeded": 504,
    "cancelled": 499,
    "internal_error": 500,
}

ERROR_RETRYABLE_BY_CODE = {  # docstring: 通用错误码 -> retryable 默认值
    "bad_request": False,
    "not_found": False,
    "upstream_model": True,
    "schema_mismatch": False,
    "data_access": True,
    "deadline_exceeded": True,
    "cancelled": False,
    "internal_error": False,
}

INTERNAL_ERROR_CODE = "internal_error"  # docstring: 未知异常统一错误码
INTERNAL_ERROR_MESSAGE = "internal error"  # docstring: 未知异常统一消息


def is_valid_error_code(error_code: str) -> bool:
    """
    [职责] 校验错误码是否满足命名规范或通用错误码列表。
    [边界] 仅做格式校验，不保证全局唯一。
    [上游关系] DomainError 初始化时调用。
    [下游关系] api/errors.py 输出稳定错误码。
    """

    if not error_code:
        return False  # docstring: 空字符串直接视为无效
    if error_code in STANDARD_ERROR_CODES:
        return True  # docstring: 允许通用错误码
    return bool(
        ERROR_CODE_PATTERN_AREA.match(error_code) or ERROR_CODE_PATTERN_DOT.match(error_code)
    )  # docstring: 推荐格式校验（AREA__REASON / area.reason）


def ensure_json_safe_detail(detail: ErrorDetail) -> ErrorDetail:
    """
    [职责] 校验 detail 是否可 JSON 序列化。
    [边界] detail 必须是 dict；不做降级或裁剪。
    [上游关系] DomainError 初始化时调用。
    [下游关系] ErrorResponse.detail 直接输出。
    """

    if not isinstance(detail, dict):
        raise ValueError("detail must be a dict")  # docstring: 强制 detail 为 dict 结构
    try:
        json.dumps(detail)  # docstring: JSON 序列化校验
    except TypeError as exc:
        raise ValueError("detail must be JSON-serializable") from exc  # docstring: 明确提示调用方降级
    return detail


class DomainError(Exception):
    """
    [职责] 领域错误最小合同：统一 error_code/message/detail/cause，并提供 http_status/retryable 提示。
    [边界] 仅表达语义，不承担日志、告警、HTTP 输出。
    [上游关系] services/pipelines/repos 抛出本错误；必要时携带 cause。
    [下游关系] api/errors.py 根据本错误映射 HTTP status 与 ErrorResponse。
    """

    default_code = INTERNAL_ERROR_CODE  # docstring: 子类默认错误码
    default_message = INTERNAL_ERROR_MESSAGE  # docstring: 子类默认消息

    def __init__(
        self,
        *,
        error_code: Optional[str] = None,
        message: Optional[str] = None,
        detail: Optional[ErrorDetail] = None,
        cause: Optional[BaseException] = None,
        http_status: Optional[int] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        code = error_code or self.default_code
        if not is_valid_error_code(code):
            raise ValueError(f"invalid error_code: {code}")  # docstring: 防止不规范错误码泄露
        normalized_detail = ensure_json_safe_detail(detail or {})  # docstring: 保证 detail 可序列化
        text = message or self.default_message

        super().__init__(text)
        self.error_code = code  # docstring: 稳定错误码
        self.message = text  # docstring: 用户可读错误信息
        self.detail = normalized_detail  # docstring: JSON-safe 细节
        self.cause = cause  # docstring: 上游异常引用
        self.http_status = (
            http_status if http_status is not None else ERROR_HTTP_STATUS_BY_CODE.get(code, 500)
        )  # docstring: HTTP 映射提示
        self.retryable = (
            retryable if retryable is not None else ERROR_RETRYABLE_BY_CODE.get(code, False)
        )  # docstring: 可重试提示

        if cause is not None:
            self.__cause__ = cause  # docstring: 保留异常链路

    def to_dict(self) -> Dict[str, Any]:
        """
        [职责] 输出 ErrorResponse.error 结构（不包含 trace_id）。
        [边界] 不包含 cause；不做字段脱敏。
        [上游关系] to_http_error 调用。
        [下游关系] 前端/客户端消费稳定字段集合。
        """

        return {
            "code": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }


class BadRequestError(DomainError):
    """请求参数不合法（400）。"""

    default_code = "bad_request"
    default_message = "bad request"


class NotFoundError(DomainError):
    """资源不存在（404），如未知会话或剧本。"""

    default_code = "not_found"
    default_message = "not found"


class UpstreamModelError(DomainError):
    """
    [职责] 模型调用失败：意图分类、对话生成或 embedding 调用抛出的任何异常。
    [边界] 不区分 provider；provider 名称与模型名放入 detail，不包含密钥。
    [上游关系] generator/embed/intent 在调用边界包装第三方异常。
    [下游关系] 非流式调用方收到该错误；流式边界转为 error 事件。
    """

    default_code = "upstream_model"
    default_message = "upstream model call failed"


class SchemaMismatchError(UpstreamModelError):
    """
    [职责] 结构化输出无法通过 schema 校验（模型返回了非 JSON 或字段不合法）。
    [边界] 作为 UpstreamModelError 的变体；detail.raw_output 保留截断后的原始输出。
    [上游关系] intent 分类器在解析/校验失败时抛出。
    [下游关系] 调用方可按 UpstreamModelError 统一处理。
    """

    default_code = "schema_mismatch"
    default_message = "structured output does not match the expected schema"


class DataAccessError(DomainError):
    """
    [职责] 存储/向量检索失败（SQLAlchemy 异常等）。
    [边界] 不暴露 SQL 语句原文；只记录表名与异常类型。
    [上游关系] repos 捕获 SQLAlchemyError 后抛出。
    [下游关系] 检索链路原样向上传播。
    """

    default_code = "data_access"
    default_message = "data access failed"


class DeadlineExceededError(DomainError):
    """单次请求超过截止时间（504）。"""

    default_code = "deadline_exceeded"
    default_message = "deadline exceeded"


class PipelineCancelledError(DomainError):
    """请求已被取消（客户端断开等）。"""

    default_code = "cancelled"
    default_message = "request cancelled"


class InternalError(DomainError):
    """
    [职责] 未知异常的内部错误（500）。
    [边界] 不暴露原始异常堆栈到 message/detail。
    [上游关系] api/errors.py 捕获未知异常时使用。
    [下游关系] 前端接收稳定的 internal_error 码。
    """

    default_code = INTERNAL_ERROR_CODE
    default_message = INTERNAL_ERROR_MESSAGE


def to_http_error(
    error: BaseException,
    *,
    trace_id: Optional[str] = None,
) -> Tuple[int, Dict[str, Any]]:
    """
    [职责] 将异常转换为 HTTP status + ErrorResponse payload（不耦合 FastAPI）。
    [边界] 不注入 request_id；不做日志记录。
    [上游关系] api/errors.py 捕获异常后调用。
    [下游关系] routers 返回统一 ErrorResponse。
    """

    if isinstance(error, DomainError):
        status_code = error.http_status  # docstring: 使用 DomainError 的映射提示
        payload = {"error": error.to_dict()}
    else:
        internal = InternalError(cause=error)  # docstring: 未知异常统一 500，不暴露原始信息
        status_code = internal.http_status
        payload = {"error": internal.to_dict()}

    if trace_id:
        payload["error"]["trace_id"] = trace_id  # docstring: API 层注入 trace_id

    return status_code, payload
