# src/mystery_kb_rag/backend/schemas/audit.py

"""
[职责] Audit 契约层：trace/request 标识与 provider 快照等可观测字段。
[边界] 不负责日志落盘；仅提供结构化字段定义。
[上游关系] api middleware/deps 生成 TraceContext；provider 配置生成 ProviderSnapshot。
[下游关系] PipelineContext、日志字段与 /query 响应中的 trace_id。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .ids import UUIDStr, new_uuid


class TraceContext(BaseModel):
    """
    [职责] TraceContext：一次请求的追踪上下文（trace_id/request_id）。
    [边界] 仅标识与轻量 tags；不包含 span 级别细节。
    [上游关系] API 层从请求头读取或生成。
    [下游关系] PipelineContext.trace_id/request_id，结构化日志字段。
    """

    model_config = ConfigDict(extra="allow")

    trace_id: UUIDStr = Field(default_factory=new_uuid)  # docstring: 全链路追踪ID
    request_id: UUIDStr = Field(default_factory=new_uuid)  # docstring: 单次 HTTP 请求ID
    tags: Dict[str, Any] = Field(default_factory=dict)  # docstring: 任意扩展 tags


class ProviderSnapshot(BaseModel):
    """
    [职责] ProviderSnapshot：chat/embedding provider 的非敏感配置快照。
    [边界] 不存储密钥；只存 provider/model/endpoint 与少量参数。
    [上游关系] ProviderConfig.snapshot / EmbeddingConfig.snapshot 生成。
    [下游关系] PipelineContext.provider_snapshot，日志与调试输出。
    """

    model_config = ConfigDict(extra="allow")

    kind: str = Field(..., min_length=1, max_length=50)  # docstring: llm/embedder
    provider: str = Field(..., min_length=1, max_length=50)  # docstring: mock/openai/openai_like/ollama/dashscope
    name: str = Field(..., min_length=1, max_length=200)  # docstring: 模型名称

    params: Dict[str, Any] = Field(default_factory=dict)  # docstring: 非敏感参数（temperature/dimensions 等）
    endpoint: Optional[str] = Field(default=None, max_length=500)  # docstring: base_url（可选）
