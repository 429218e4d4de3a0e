# src/mystery_kb_rag/backend/api/deps.py

"""
[职责] API 依赖装配：提供 session、session_factory、trace_context、PipelineDeps 与请求级 RunDeadline 注入。
[边界] 不做业务逻辑；不提交事务；模型/embedding 实例按 Settings 构造一次并缓存在 app.state。
[上游关系] FastAPI 路由层调用依赖注入；测试通过 dependency_overrides 替换。
[下游关系] services/routers 通过本模块获取依赖实例。
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mystery_kb_rag.backend.db.engine import SessionLocal
from mystery_kb_rag.backend.pipelines.base.context import PipelineDeps
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.generation.generator import resolve_llm
from mystery_kb_rag.backend.pipelines.retrieval.embed import resolve_embedder
from mystery_kb_rag.backend.schemas.audit import TraceContext
from mystery_kb_rag.backend.schemas.ids import UUIDStr, new_uuid
from mystery_kb_rag.backend.schemas.provider import EmbeddingConfig, ProviderConfig
from mystery_kb_rag.backend.utils.constants import DEFAULT_ANSWER_TEMPERATURE, DEFAULT_INTENT_TEMPERATURE
from mystery_kb_rag.config import settings


async def get_session() -> AsyncIterator[AsyncSession]:
    """
    [职责] 获取数据库会话（每个 request 一个 session）。
    [边界] 不提交/回滚事务；仅负责创建与关闭。
    """
    async with SessionLocal() as session:
        yield session  # docstring: 输出 session 给下游使用


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """会话工厂（并发检索分支与流式写回各自开会话）。"""
    return SessionLocal


def get_trace_context(request: Request) -> TraceContext:
    """
    [职责] 获取或创建 TraceContext（优先使用 middleware 注入）。
    [边界] 不写入日志；不校验 UUID 格式。
    [上游关系] middleware 注入 request.state.trace_context。
    [下游关系] services 需要 trace_id/request_id 时调用。
    """
    existing = getattr(request.state, "trace_context", None)
    if isinstance(existing, TraceContext):
        return existing  # docstring: 复用 middleware 注入的 TraceContext

    trace_id = str(getattr(request.state, "trace_id", "") or "").strip() or str(new_uuid())
    request_id = str(getattr(request.state, "request_id", "") or "").strip() or str(new_uuid())

    ctx = TraceContext(trace_id=UUIDStr(trace_id), request_id=UUIDStr(request_id), tags={})
    request.state.trace_context = ctx  # docstring: 写回 state 以复用
    request.state.trace_id = trace_id
    request.state.request_id = request_id
    return ctx


def build_pipeline_deps(
    app_settings: Any,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> PipelineDeps:
    """
    [职责] 从 Settings 构造 PipelineDeps（ProviderConfig/EmbeddingConfig -> resolve_llm/resolve_embedder）。
    [边界] 不做网络探测；不支持的 provider 抛 ValueError。
    [上游关系] get_pipeline_deps / create_app。
    [下游关系] services（prepare_chat / answer_query / run_search）。
    """
    intent_cfg = ProviderConfig.from_settings(app_settings, "intent")
    chat_cfg = ProviderConfig.from_settings(app_settings, "chat")
    embed_cfg = EmbeddingConfig.from_settings(app_settings)

    return PipelineDeps(
        session_factory=session_factory or SessionLocal,
        intent_llm=resolve_llm(intent_cfg, temperature=DEFAULT_INTENT_TEMPERATURE),
        chat_llm=resolve_llm(chat_cfg, temperature=DEFAULT_ANSWER_TEMPERATURE),
        embedder=resolve_embedder(embed_cfg),
        intent_mode=intent_cfg.structured_output_mode(),
        rrf_k=int(app_settings.RETRIEVAL_RRF_K),
        semantic_limit=int(app_settings.SEMANTIC_MATCH_COUNT),
        semantic_threshold=float(app_settings.SEMANTIC_MATCH_THRESHOLD),
        provider_snapshot={
            "intent": intent_cfg.snapshot(temperature=DEFAULT_INTENT_TEMPERATURE).model_dump(),
            "chat": chat_cfg.snapshot(temperature=DEFAULT_ANSWER_TEMPERATURE).model_dump(),
            "embedder": embed_cfg.snapshot().model_dump(),
        },
    )


def get_pipeline_deps(request: Request) -> PipelineDeps:
    """
    [职责] 获取应用级 PipelineDeps（首次调用时按 Settings 构造并缓存到 app.state）。
    [边界] 不在每个请求重复构造模型客户端。
    """
    deps = getattr(request.app.state, "pipeline_deps", None)
    if isinstance(deps, PipelineDeps):
        return deps
    deps = build_pipeline_deps(settings)
    request.app.state.pipeline_deps = deps
    return deps


def get_deadline() -> RunDeadline:
    """请求级截止时间（PIPELINE_DEADLINE_S 未设置时无截止，仅响应取消）。"""
    return RunDeadline(settings.PIPELINE_DEADLINE_S)
