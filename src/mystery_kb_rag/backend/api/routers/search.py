# src/mystery_kb_rag/backend/api/routers/search.py

"""
[职责] Search Router：暴露直接检索接口（POST /search），不经过意图分类。
[边界] 不做回答生成；仅做 HTTP 入参/出参映射。
[上游关系] 前端检索页。
[下游关系] search_service.run_search。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from mystery_kb_rag.backend.api.deps import get_deadline, get_pipeline_deps, get_trace_context
from mystery_kb_rag.backend.api.errors import to_json_response
from mystery_kb_rag.backend.api.schemas_http._common import ResultItemView
from mystery_kb_rag.backend.api.schemas_http.search import SearchRequest, SearchResponse
from mystery_kb_rag.backend.pipelines.base.context import PipelineDeps
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.schemas.audit import TraceContext
from mystery_kb_rag.backend.services.search_service import run_search


router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse)
async def search_endpoint(
    request: SearchRequest,
    deps: PipelineDeps = Depends(get_pipeline_deps),
    deadline: RunDeadline = Depends(get_deadline),
    trace_context: TraceContext = Depends(get_trace_context),
):
    """
    [职责] query -> 语义检索，filters -> 结构化检索，二者皆有 -> RRF 融合。
    [边界] 二者皆无 -> 400；过滤值非法 -> 400。
    """
    filters = request.filters.model_dump(exclude_none=True) if request.filters is not None else None
    try:
        result = await run_search(
            deps=deps,
            query=request.query,
            filters=filters,
            deadline=deadline,
        )
    except Exception as exc:
        return to_json_response(
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )

    return SearchResponse(
        items=[ResultItemView.model_validate(item.to_dict()) for item in result.items],
        total=result.total,
        message=result.message,
    )
