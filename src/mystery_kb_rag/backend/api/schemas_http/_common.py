# src/mystery_kb_rag/backend/api/schemas_http/_common.py

"""
[职责] HTTP Schema 公共组件：定义 ErrorResponse 与通用 ID 类型、检索结果视图，作为 API 契约基础。
[边界] 仅描述 HTTP 输入/输出结构；不负责 trace 注入、异常映射或业务逻辑。
[上游关系] api/errors 将 DomainError 映射到 ErrorResponse。
[下游关系] api/schemas_http/{chat,search,query,scripts} 复用本模块结构。
"""

from __future__ import annotations

from typing import Any, Dict, Literal, NewType, Optional

from pydantic import BaseModel, ConfigDict, Field


UUIDStr = NewType("UUIDStr", str)  # docstring: 通用 UUID 字符串类型（运行时仍为 str）

TraceId = UUIDStr  # docstring: trace_id（跨请求链路）
RequestId = UUIDStr  # docstring: request_id（单次请求）
SessionId = UUIDStr  # docstring: session_id（会话ID）
ScriptId = UUIDStr  # docstring: script_id（剧本ID）

ErrorCode = Literal[
    "bad_request",
    "not_found",
    "upstream_model",
    "schema_mismatch",
    "data_access",
    "deadline_exceeded",
    "cancelled",
    "internal_error",
]  # docstring: HTTP 层标准错误码

ErrorDetail = Dict[str, Any]  # docstring: ErrorResponse.error.detail 结构（必须 JSON-safe）


class ErrorInfo(BaseModel):
    """
    [职责] ErrorInfo：统一错误载体（code/message/trace_id/detail）。
    [边界] 不包含 HTTP status/retryable；这些由 api/errors.py 决定。
    """

    model_config = ConfigDict(extra="forbid")  # docstring: 锁死错误字段，避免 drift

    code: ErrorCode = Field(...)  # docstring: 错误码（标准枚举）
    message: str = Field(..., min_length=1)  # docstring: 人类可读错误信息
    trace_id: TraceId = Field(...)  # docstring: 全链路追踪ID
    detail: ErrorDetail = Field(default_factory=dict)  # docstring: 结构化细节（可为空）


class ErrorResponse(BaseModel):
    """HTTP 错误响应的顶层包裹结构（仅 error 字段）。"""

    model_config = ConfigDict(extra="forbid")

    error: ErrorInfo = Field(...)


class SourceView(BaseModel):
    """检索结果来源视图（文档名必有，剧本名/页码可选）。"""

    document_name: str
    script_name: Optional[str] = None
    page_start: Optional[int] = None
    page_end: Optional[int] = None


class ResultItemView(BaseModel):
    """
    [职责] 检索结果条目视图：id/type/data/source/score。
    [边界] data 为实体负载的 JSON 快照（字段随 type 变化）。
    [上游关系] RankedItem.to_dict()。
    [下游关系] /search items、/query items。
    """

    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    source: SourceView
    score: float


class CitationView(BaseModel):
    """回答引用视图：文档名 + 可选页码区间。"""

    document_name: str
    page_start: Optional[int] = None
    page_end: Optional[int] = None
