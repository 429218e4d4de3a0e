# src/mystery_kb_rag/backend/pipelines/retrieval/pipeline.py

"""
[职责] retrieval pipeline：严格按 classify → search → fuse → generate 编排混合检索问答，产出 PipelineResult。
[边界] 不捕获分类/检索/融合错误（原样传播）；不提交事务；不持久化对话消息（由 chat_service 负责）。
[上游关系] services（/query 阻塞调用、/chat 流式调用 run_retrieval_stages）；测试直接调用。
[下游关系] PipelineResult.answer/citations/fused_results；PipelineState 供流式边界继续合成。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from llama_index.core.llms import ChatMessage, MessageRole
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mystery_kb_rag.backend.db.models.chat import ChatMessageModel
from mystery_kb_rag.backend.db.repo.session_repo import ChatSessionRepo
from mystery_kb_rag.backend.pipelines.base.context import PipelineContext, PipelineDeps
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.generation import synthesizer as synthesizer_mod
from mystery_kb_rag.backend.utils.constants import (
    STAGE_CLASSIFY,
    STAGE_FUSE,
    STAGE_GENERATE,
    STAGE_SEARCH,
    TIMING_TOTAL_KEY,
)
from mystery_kb_rag.backend.utils.logging_ import get_logger, hash_text, log_event, truncate_text

from . import empty_results as empty_mod
from . import executor as executor_mod
from . import fusion as fusion_mod
from . import intent as intent_mod
from .types import Citation, PipelineState, RankedItem


logger = get_logger("retrieval.pipeline")

_HISTORY_ROLES: Dict[str, MessageRole] = {
    "user": MessageRole.USER,
    "assistant": MessageRole.ASSISTANT,
}  # docstring: 存储角色 -> LLM 消息角色


@dataclass
class PipelineResult:
    """
    [职责] 阻塞调用输出：回答、引用、融合结果，以及完整状态与 timing。
    [边界] out_of_scope 仅为元数据，不影响 answer。
    """

    answer: str
    citations: List[Citation]
    fused_results: List[RankedItem]
    state: PipelineState
    out_of_scope: bool = False
    timing_ms: Dict[str, float] = field(default_factory=dict)
    trace_id: Optional[str] = None


def to_history_messages(rows: Sequence[ChatMessageModel]) -> List[ChatMessage]:
    """
    [职责] 存储消息 -> LLM 历史消息（user→user，assistant→assistant，保持输入顺序）。
    [边界] 未知角色的消息被跳过。
    [上游关系] load_history；chat_service.get_session_history。
    """
    return [
        ChatMessage(role=_HISTORY_ROLES[row.role], content=row.content)
        for row in rows
        if row.role in _HISTORY_ROLES
    ]


async def load_history(
    store: async_sessionmaker[AsyncSession],
    session_id: str,
) -> List[ChatMessage]:
    """加载会话历史（created_at 升序）；会话不存在时返回空列表。"""
    async with store() as session:
        rows = await ChatSessionRepo(session).list_messages(session_id)
    return to_history_messages(rows)


def _log_stage(ctx: PipelineContext, stage: str, **fields: object) -> None:
    log_event(
        logger,
        logging.INFO,
        f"pipeline.{stage}",
        context=ctx,
        fields={"stage": stage, "elapsed_ms": round(ctx.timing.get(stage, 0.0) or 0.0, 3), **fields},
    )


async def run_retrieval_stages(
    query: str,
    *,
    ctx: PipelineContext,
    deadline: Optional[RunDeadline] = None,
    history: Optional[List[ChatMessage]] = None,
) -> PipelineState:
    """
    [职责] 执行 classify → search → fuse 三个阶段并返回状态（不生成回答）。
    [边界] 各阶段严格串行；任一阶段错误原样传播。
    [上游关系] run_retrieval_pipeline；chat_service.stream_chat（随后调用 stream_answer）。
    [下游关系] PipelineState.classification/structured_results/semantic_results/fused_results。
    """
    deps = ctx.deps
    deadline = deadline or RunDeadline.unbounded()
    state = PipelineState(query=query, session_id=ctx.session_id, history=list(history or []))

    with ctx.timing.stage(STAGE_CLASSIFY):
        state.classification = await intent_mod.classify_intent(
            query,
            llm=deps.intent_llm,
            deadline=deadline,
            mode=deps.intent_mode,
        )
    _log_stage(
        ctx,
        STAGE_CLASSIFY,
        query_hash=hash_text(query),
        query_preview=truncate_text(query, max_len=40),
        query_kind=state.classification.query_kind,
    )

    with ctx.timing.stage(STAGE_SEARCH):
        outcome = await executor_mod.execute_search(
            state.classification,
            query=query,
            embedder=deps.embedder,
            store=deps.session_factory,
            limit=deps.semantic_limit,
            threshold=deps.semantic_threshold,
            deadline=deadline,
        )
    state.structured_results = list(outcome.structured)
    state.semantic_results = list(outcome.semantic)
    _log_stage(
        ctx,
        STAGE_SEARCH,
        structured_hits=len(state.structured_results),
        semantic_hits=len(state.semantic_results),
    )

    with ctx.timing.stage(STAGE_FUSE):
        state.fused_results = fusion_mod.fuse_rrf(state.structured_results, state.semantic_results, k=deps.rrf_k)
    _log_stage(ctx, STAGE_FUSE, fused=len(state.fused_results))
    return state


async def run_retrieval_pipeline(
    query: str,
    *,
    deps: PipelineDeps,
    session_id: Optional[str] = None,
    deadline: Optional[RunDeadline] = None,
    ctx: Optional[PipelineContext] = None,
) -> PipelineResult:
    """
    [职责] 阻塞执行完整 pipeline：classify → search → fuse → generate。
    [边界] 融合结果为空时返回空结果模板（不调用 chat 模型、引用为空）；
           session_id 存在时在 generate 阶段加载历史。
    [上游关系] chat_service.answer_query；测试。
    [下游关系] PipelineResult。
    """
    ctx = ctx or PipelineContext.from_deps(deps, session_id=session_id)
    if ctx.session_id is None:
        ctx.session_id = session_id
    deadline = deadline or RunDeadline.unbounded()

    state = await run_retrieval_stages(query, ctx=ctx, deadline=deadline)

    with ctx.timing.stage(STAGE_GENERATE):
        if session_id:
            state.history = await deadline.run(load_history(ctx.deps.session_factory, session_id), stage="history")
        if not state.fused_results:
            state.answer = empty_mod.format_empty_results_response(query)
            state.citations = []
        else:
            result = await synthesizer_mod.synthesize_answer(
                query,
                state.fused_results,
                llm=ctx.deps.chat_llm,
                history=state.history,
                deadline=deadline,
            )
            state.answer = result.answer
            state.citations = list(result.citations)

    out_of_scope = empty_mod.is_out_of_scope(state.answer)
    _log_stage(
        ctx,
        STAGE_GENERATE,
        citations=len(state.citations),
        history=len(state.history),
        out_of_scope=out_of_scope,
    )

    timing_ms = ctx.timing_ms(total_key=TIMING_TOTAL_KEY)
    return PipelineResult(
        answer=state.answer,
        citations=list(state.citations),
        fused_results=list(state.fused_results),
        state=state,
        out_of_scope=out_of_scope,
        timing_ms=timing_ms,
        trace_id=str(ctx.trace_id),
    )
