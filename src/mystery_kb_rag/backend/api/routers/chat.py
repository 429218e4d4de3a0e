# src/mystery_kb_rag/backend/api/routers/chat.py

"""
[职责] Chat Router：暴露流式问答接口（POST /chat，SSE）与会话消息查询接口。
[边界] 不直接调用 pipeline；不控制事务；流开始前的错误返回 JSON ErrorResponse，流开始后的错误走 SSE error 事件。
[上游关系] 前端聊天页发起请求。
[下游关系] chat_service.prepare_chat / stream_chat / get_session_messages。
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from mystery_kb_rag.backend.api.deps import (
    get_deadline,
    get_pipeline_deps,
    get_session,
    get_trace_context,
)
from mystery_kb_rag.backend.api.errors import to_json_response
from mystery_kb_rag.backend.api.schemas_http._common import CitationView, SessionId
from mystery_kb_rag.backend.api.schemas_http.chat import (
    ChatMessagesResponse,
    ChatMessageView,
    ChatRequest,
)
from mystery_kb_rag.backend.pipelines.base.context import PipelineDeps
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.schemas.audit import TraceContext
from mystery_kb_rag.backend.services.chat_service import (
    get_session_messages,
    prepare_chat,
    stream_chat,
)
from mystery_kb_rag.backend.utils.constants import SSE_HEADERS, SSE_MEDIA_TYPE


router = APIRouter(prefix="/chat", tags=["chat"])  # docstring: chat 路由前缀


@router.post("")
async def chat_endpoint(
    request: ChatRequest,
    deps: PipelineDeps = Depends(get_pipeline_deps),
    deadline: RunDeadline = Depends(get_deadline),
    trace_context: TraceContext = Depends(get_trace_context),
):
    """
    [职责] 校验消息、准备会话与检索结果后返回 SSE 流。
    [边界] 空白消息 -> 400；会话不存在 -> 404；检索阶段错误 -> 对应 HTTP 错误码。
    [上游关系] 前端 EventSource/fetch 流式读取。
    [下游关系] stream_chat 产出 session_id -> chunk* -> sources -> [DONE]。
    """
    try:
        prepared = await prepare_chat(
            deps=deps,
            message=request.message,
            session_id=str(request.session_id) if request.session_id else None,
            trace_context=trace_context,
            deadline=deadline,
        )  # docstring: 前置阶段（会话/历史/检索）
    except Exception as exc:
        return to_json_response(
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )  # docstring: 流开始前的异常映射为 ErrorResponse

    return StreamingResponse(
        stream_chat(prepared),
        media_type=SSE_MEDIA_TYPE,
        headers=dict(SSE_HEADERS),
    )


@router.get("/sessions/{session_id}/messages", response_model=ChatMessagesResponse)
async def list_session_messages(
    session_id: SessionId,
    session: AsyncSession = Depends(get_session),
    trace_context: TraceContext = Depends(get_trace_context),
):
    """按 created_at 升序返回会话消息（含 assistant 消息的 sources）。"""
    try:
        rows = await get_session_messages(session, str(session_id))
    except Exception as exc:
        return to_json_response(
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )

    messages: List[ChatMessageView] = []
    for row in rows:
        sources = [CitationView.model_validate(s) for s in (row.sources or [])] if row.sources is not None else None
        messages.append(
            ChatMessageView(
                id=str(row.id),
                session_id=str(row.session_id),
                role=row.role,
                content=row.content,
                sources=sources,
                created_at=row.created_at,
            )
        )
    return ChatMessagesResponse(session_id=str(session_id), messages=messages)
