# src/mystery_kb_rag/backend/pipelines/base/context.py

"""
[职责] PipelineDeps / PipelineContext：检索 pipeline 的依赖聚合（会话工厂、模型、embedding、检索参数）与单次请求的可观测性字段（trace/timing）。
[边界] 不创建/关闭数据库连接；不管理事务提交；不做流程编排；仅提供“依赖聚合 + 轻量可观测性字段”。
[上游关系] api/deps.get_pipeline_deps 或测试 fixture 构造 PipelineDeps；services 为每个请求调用 PipelineContext.from_deps(...)。
[下游关系] pipeline 各阶段从 ctx.deps 取依赖，写入 ctx.timing；timing_ms/provider_snapshot/trace_id 进入响应与日志。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

from llama_index.core.base.embeddings.base import BaseEmbedding
from llama_index.core.llms import LLM
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mystery_kb_rag.backend.schemas.ids import UUIDStr, new_uuid
from mystery_kb_rag.backend.utils.constants import (
    DEFAULT_RRF_K,
    DEFAULT_SEMANTIC_LIMIT,
    DEFAULT_SEMANTIC_THRESHOLD,
)

from .timing import TimingCollector


@dataclass(frozen=True)
class PipelineDeps:
    """
    [职责] 跨请求复用的协作者：会话工厂 + intent/chat LLM + embedder + 检索参数。
    [边界] 不持有 AsyncSession（各检索分支按需从 session_factory 开会话）。
    [上游关系] api/deps.get_pipeline_deps（按 Settings 构造）；测试直接构造。
    [下游关系] run_retrieval_pipeline / run_retrieval_stages / stream_chat。
    """

    session_factory: async_sessionmaker[AsyncSession]
    intent_llm: LLM
    chat_llm: LLM
    embedder: BaseEmbedding
    intent_mode: Literal["native", "json_prompt"] = "native"
    rrf_k: int = DEFAULT_RRF_K
    semantic_limit: int = DEFAULT_SEMANTIC_LIMIT
    semantic_threshold: float = DEFAULT_SEMANTIC_THRESHOLD
    provider_snapshot: Dict[str, Any] = field(default_factory=dict)  # docstring: intent/chat/embedder 参数快照


@dataclass
class PipelineContext:
    """
    [职责] 单次 pipeline 执行的上下文：依赖 + trace/request id + timing。
    [边界] 不持有跨请求全局状态；不做 commit/rollback；只做“聚合与透传”。
    [上游关系] services 调用 PipelineContext.from_deps(...)。
    [下游关系] pipeline 写入 ctx.timing；日志使用 ctx 作为 context 提取 trace 字段。
    """

    deps: PipelineDeps

    # observability / audit
    trace_id: UUIDStr = field(default_factory=new_uuid)  # docstring: 单次链路追踪ID
    request_id: UUIDStr = field(default_factory=new_uuid)  # docstring: 单次请求ID（可由上游注入覆盖）
    session_id: Optional[str] = None  # docstring: 对话会话ID（日志字段）

    timing: TimingCollector = field(default_factory=TimingCollector)
    meta: Dict[str, Any] = field(default_factory=dict)  # docstring: 可选：额外上下文（debug flags）

    @classmethod
    def from_deps(
        cls,
        deps: PipelineDeps,
        *,
        trace_id: Optional[str] = None,
        request_id: Optional[str] = None,
        session_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "PipelineContext":
        return cls(
            deps=deps,
            trace_id=UUIDStr(trace_id) if trace_id else new_uuid(),
            request_id=UUIDStr(request_id) if request_id else new_uuid(),
            session_id=session_id,
            timing=TimingCollector(),
            meta=meta or {},
        )

    @property
    def provider_snapshot(self) -> Dict[str, Any]:
        return self.deps.provider_snapshot

    def timing_ms(self, *, include_total: bool = True, total_key: str = "total") -> Dict[str, float]:
        """导出 timing_ms（JSON dict）；key 与 TimingCollector 保持一致。"""
        return self.timing.to_dict(include_total=include_total, total_key=total_key)

    def get_flag(self, key: str, default: Any = None) -> Any:
        return self.meta.get(key, default)
