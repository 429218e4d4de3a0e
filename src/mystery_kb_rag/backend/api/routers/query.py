# src/mystery_kb_rag/backend/api/routers/query.py

"""
[职责] Query Router：阻塞问答接口（POST /query），返回完整回答、引用与融合结果。
[边界] 不写入会话消息（session_id 仅用于加载历史）。
[上游关系] 外部调用方 / 批量评测脚本。
[下游关系] chat_service.answer_query。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from mystery_kb_rag.backend.api.deps import get_deadline, get_pipeline_deps, get_trace_context
from mystery_kb_rag.backend.api.errors import to_json_response
from mystery_kb_rag.backend.api.schemas_http._common import CitationView, ResultItemView
from mystery_kb_rag.backend.api.schemas_http.query import QueryRequest, QueryResponse
from mystery_kb_rag.backend.pipelines.base.context import PipelineDeps
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.schemas.audit import TraceContext
from mystery_kb_rag.backend.services.chat_service import answer_query


router = APIRouter(prefix="/query", tags=["query"])


@router.post("", response_model=QueryResponse)
async def query_endpoint(
    request: QueryRequest,
    deps: PipelineDeps = Depends(get_pipeline_deps),
    deadline: RunDeadline = Depends(get_deadline),
    trace_context: TraceContext = Depends(get_trace_context),
):
    try:
        result = await answer_query(
            deps=deps,
            query=request.query,
            session_id=str(request.session_id) if request.session_id else None,
            trace_context=trace_context,
            deadline=deadline,
        )
    except Exception as exc:
        return to_json_response(
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )

    classification = result.state.classification
    return QueryResponse(
        answer=result.answer,
        citations=[CitationView.model_validate(c.to_wire()) for c in result.citations],
        items=[ResultItemView.model_validate(item.to_dict()) for item in result.fused_results],
        query_kind=getattr(classification, "query_kind", None),
        out_of_scope=result.out_of_scope,
        timing_ms=dict(result.timing_ms),
        trace_id=str(result.trace_id or trace_context.trace_id),
    )
