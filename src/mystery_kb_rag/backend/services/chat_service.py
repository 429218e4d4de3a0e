# src/mystery_kb_rag/backend/services/chat_service.py

"""
[职责] chat_service：对话会话服务入口（会话/消息持久化 + 历史加载 + 流式问答编排 + 阻塞问答）。
[边界] 不处理 HTTP 语义（StreamingResponse 由 router 构造）；不直接调用底层 SDK；事务边界在本层（commit）。
[上游关系] api/routers/chat.py 调用 prepare_chat/stream_chat/get_session_messages；api/routers/query.py 调用 answer_query。
[下游关系] retrieval pipeline（run_retrieval_stages / run_retrieval_pipeline）与 synthesizer.stream_answer；ChatSessionRepo 写入消息。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from llama_index.core.llms import ChatMessage
from sqlalchemy.ext.asyncio import AsyncSession

from mystery_kb_rag.backend.db.models.chat import ChatMessageModel
from mystery_kb_rag.backend.db.repo import ChatSessionRepo
from mystery_kb_rag.backend.pipelines.base.context import PipelineContext, PipelineDeps
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.generation.synthesizer import AnswerStream, StreamError, stream_answer
from mystery_kb_rag.backend.pipelines.retrieval.pipeline import (
    PipelineResult,
    run_retrieval_pipeline,
    run_retrieval_stages,
    to_history_messages,
)
from mystery_kb_rag.backend.pipelines.retrieval.types import PipelineState
from mystery_kb_rag.backend.schemas.audit import TraceContext
from mystery_kb_rag.backend.utils.errors import BadRequestError, DomainError, NotFoundError
from mystery_kb_rag.backend.utils.logging_ import get_logger, hash_text, log_event, truncate_text
from mystery_kb_rag.backend.utils.sse import (
    DONE_EVENT,
    chunk_event,
    error_event,
    session_event,
    sources_event,
)


logger = get_logger("services.chat")

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

EMPTY_MESSAGE_ERROR = "消息内容不能为空"  # docstring: 空消息 400 文案
SESSION_NOT_FOUND_ERROR = "会话不存在"  # docstring: 未知会话 404 文案
STREAM_FAILED_ERROR = "流式响应生成失败"  # docstring: 错误无消息时的兜底文案


async def create_session(session: AsyncSession) -> str:
    """创建会话并提交，返回会话 ID。"""
    obj = await ChatSessionRepo(session).create_session()
    await session.commit()
    return str(obj.id)


async def add_message(
    session: AsyncSession,
    *,
    session_id: str,
    role: str,
    content: str,
    sources: Optional[Sequence[Dict[str, Any]]] = None,
) -> ChatMessageModel:
    """
    [职责] 写入一条会话消息并提交。
    [边界] role 仅 user/assistant；sources 为 Citation.to_wire() 列表快照。
    """
    if role not in (ROLE_USER, ROLE_ASSISTANT):
        raise BadRequestError(message=f"invalid message role: {role}", detail={"role": role})
    msg = await ChatSessionRepo(session).add_message(
        session_id=session_id,
        role=role,
        content=content,
        sources=list(sources) if sources is not None else None,
    )
    await session.commit()
    return msg


async def get_session_messages(session: AsyncSession, session_id: str) -> List[ChatMessageModel]:
    """
    [职责] 加载会话全部消息（created_at 升序）。
    [边界] 会话不存在抛 NotFoundError。
    """
    repo = ChatSessionRepo(session)
    if await repo.get_session(session_id) is None:
        raise NotFoundError(message=SESSION_NOT_FOUND_ERROR, detail={"session_id": session_id})
    return await repo.list_messages(session_id)


async def get_session_history(session: AsyncSession, session_id: str) -> List[ChatMessage]:
    """会话历史 -> LLM 消息（user→user，assistant→assistant）。"""
    return to_history_messages(await ChatSessionRepo(session).list_messages(session_id))


@dataclass
class PreparedChat:
    """
    [职责] 流式问答的已就绪状态：会话已解析、用户消息已写入、检索阶段已完成、AnswerStream 已创建（引用已计算）。
    [边界] answer.chunks 只能消费一次（由 stream_chat 消费）。
    """

    session_id: str
    message: str
    ctx: PipelineContext
    deadline: RunDeadline
    state: PipelineState
    answer: AnswerStream


async def prepare_chat(
    *,
    deps: PipelineDeps,
    message: str,
    session_id: Optional[str] = None,
    trace_context: Optional[TraceContext] = None,
    deadline: Optional[RunDeadline] = None,
) -> PreparedChat:
    """
    [职责] 流式问答前置阶段：校验消息 → 解析/创建会话 → 加载历史 → 写入用户消息 → classify/search/fuse → 创建 AnswerStream。
    [边界] 历史在写入当前用户消息之前加载（当前问题只作为 human 消息出现一次）；
           前置阶段错误原样抛出（由 router 映射为 HTTP 错误响应，而非 SSE 事件）。
    [上游关系] api/routers/chat.py。
    [下游关系] stream_chat(prepared)。
    """
    text = str(message or "").strip()
    if not text:
        raise BadRequestError(message=EMPTY_MESSAGE_ERROR)

    deadline = deadline or RunDeadline.unbounded()

    async with deps.session_factory() as session:
        repo = ChatSessionRepo(session)
        if session_id:
            if await repo.get_session(session_id) is None:
                raise NotFoundError(message=SESSION_NOT_FOUND_ERROR, detail={"session_id": session_id})
            sid = str(session_id)
        else:
            sid = str((await repo.create_session()).id)
        history = await get_session_history(session, sid)
        await repo.add_message(session_id=sid, role=ROLE_USER, content=text)
        await session.commit()

    ctx = PipelineContext.from_deps(
        deps,
        trace_id=trace_context.trace_id if trace_context else None,
        request_id=trace_context.request_id if trace_context else None,
        session_id=sid,
    )
    log_event(
        logger,
        logging.INFO,
        "chat.start",
        context=ctx,
        fields={"query_hash": hash_text(text), "query_preview": truncate_text(text, max_len=40), "history": len(history)},
    )

    state = await run_retrieval_stages(text, ctx=ctx, deadline=deadline, history=history)
    answer = stream_answer(
        text,
        state.fused_results,
        llm=deps.chat_llm,
        history=history,
        deadline=deadline,
    )
    return PreparedChat(session_id=sid, message=text, ctx=ctx, deadline=deadline, state=state, answer=answer)


async def stream_chat(prepared: PreparedChat) -> AsyncIterator[str]:
    """
    [职责] 产出 SSE 帧：session_id → chunk* → sources → [DONE]；成功后写入 assistant 消息（含 sources）。
    [边界] 合成失败：error 事件 + [DONE]（已发送分片保留，不写 assistant 消息）；
           客户端断开（生成器被关闭/取消）时取消 deadline 并关闭模型流。
    [上游关系] api/routers/chat.py 作为 StreamingResponse 的 body。
    [下游关系] 客户端按 parse_sse_buffer 解析。
    """
    ctx = prepared.ctx
    answer = prepared.answer
    parts: List[str] = []
    finished = False

    try:
        yield session_event(prepared.session_id)

        async for item in answer.chunks:
            if isinstance(item, StreamError):
                log_event(
                    logger,
                    logging.WARNING,
                    "chat.stream_error",
                    context=ctx,
                    fields={"error_type": item.error_type, "chunks": len(parts)},
                )
                yield error_event(item.message or STREAM_FAILED_ERROR)
                yield DONE_EVENT
                finished = True
                return
            parts.append(item)
            yield chunk_event(item)

        sources = [c.to_wire() for c in answer.citations]
        yield sources_event(sources)

        full_answer = "".join(parts)
        try:
            async with ctx.deps.session_factory() as session:
                await add_message(
                    session,
                    session_id=prepared.session_id,
                    role=ROLE_ASSISTANT,
                    content=full_answer,
                    sources=sources,
                )
        except DomainError as exc:
            log_event(
                logger,
                logging.ERROR,
                "chat.persist_failed",
                context=ctx,
                fields={"error_code": exc.error_code},
            )
            yield error_event(exc.message or STREAM_FAILED_ERROR)
            yield DONE_EVENT
            finished = True
            return

        yield DONE_EVENT
        finished = True
        log_event(
            logger,
            logging.INFO,
            "chat.done",
            context=ctx,
            fields={"chunks": len(parts), "answer_len": len(full_answer), "sources": len(sources)},
        )
    finally:
        if not finished:
            prepared.deadline.cancel("client_disconnected")  # docstring: 客户端断开 -> 停止上游生成
            log_event(logger, logging.INFO, "chat.disconnected", context=ctx, fields={"chunks": len(parts)})
        await answer.aclose()


async def answer_query(
    *,
    deps: PipelineDeps,
    query: str,
    session_id: Optional[str] = None,
    trace_context: Optional[TraceContext] = None,
    deadline: Optional[RunDeadline] = None,
) -> PipelineResult:
    """
    [职责] 阻塞问答：执行完整 pipeline（不写入会话消息）。
    [边界] query 为空抛 BadRequestError；pipeline 错误原样传播。
    [上游关系] api/routers/query.py。
    [下游关系] PipelineResult。
    """
    text = str(query or "").strip()
    if not text:
        raise BadRequestError(message="query is required")

    ctx = PipelineContext.from_deps(
        deps,
        trace_id=trace_context.trace_id if trace_context else None,
        request_id=trace_context.request_id if trace_context else None,
        session_id=session_id,
    )
    return await run_retrieval_pipeline(text, deps=deps, session_id=session_id, deadline=deadline, ctx=ctx)


__all__ = [
    "create_session",
    "add_message",
    "get_session_messages",
    "get_session_history",
    "PreparedChat",
    "prepare_chat",
    "stream_chat",
    "answer_query",
]
