# src/mystery_kb_rag/backend/api/routers/scripts.py

"""
[职责] Scripts Router：剧本的创建、列表（含文档数）与详情（含文档列表）。
[边界] 不处理文档上传与抽取；仅做剧本元数据的读写。
[上游关系] 前端剧本管理页。
[下游关系] ScriptRepo。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mystery_kb_rag.backend.api.deps import get_session, get_trace_context
from mystery_kb_rag.backend.api.errors import to_json_response
from mystery_kb_rag.backend.api.schemas_http._common import ScriptId
from mystery_kb_rag.backend.api.schemas_http.scripts import (
    DocumentView,
    ScriptCreateRequest,
    ScriptDetail,
    ScriptListItem,
    ScriptListResponse,
    ScriptView,
)
from mystery_kb_rag.backend.db.repo import ScriptRepo
from mystery_kb_rag.backend.schemas.audit import TraceContext
from mystery_kb_rag.backend.utils.errors import BadRequestError, NotFoundError


router = APIRouter(prefix="/scripts", tags=["scripts"])

EMPTY_NAME_ERROR = "剧本名称不能为空"
SCRIPT_NOT_FOUND_ERROR = "剧本不存在"


@router.get("", response_model=ScriptListResponse)
async def list_scripts(
    session: AsyncSession = Depends(get_session),
    trace_context: TraceContext = Depends(get_trace_context),
):
    """按创建时间倒序列出剧本及文档数。"""
    try:
        rows = await ScriptRepo(session).list_with_document_count()
    except Exception as exc:
        return to_json_response(
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )

    items = [
        ScriptListItem(
            id=str(script.id),
            name=script.name,
            description=script.description,
            created_at=script.created_at,
            document_count=count,
        )
        for script, count in rows
    ]
    return ScriptListResponse(items=items, total=len(items))


@router.post("", response_model=ScriptView, status_code=201)
async def create_script(
    request: ScriptCreateRequest,
    session: AsyncSession = Depends(get_session),
    trace_context: TraceContext = Depends(get_trace_context),
):
    """
    [职责] 创建剧本（名称去除首尾空白后写入）。
    [边界] 名称为空或全空白 -> 400。
    """
    try:
        name = str(request.name or "").strip()
        if not name:
            raise BadRequestError(message=EMPTY_NAME_ERROR)
        script = await ScriptRepo(session).create(name=name, description=request.description)
        await session.commit()
    except Exception as exc:
        return to_json_response(
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )

    return ScriptView(
        id=str(script.id),
        name=script.name,
        description=script.description,
        created_at=script.created_at,
    )


@router.get("/{script_id}", response_model=ScriptDetail)
async def get_script(
    script_id: ScriptId,
    session: AsyncSession = Depends(get_session),
    trace_context: TraceContext = Depends(get_trace_context),
):
    try:
        script = await ScriptRepo(session).get_by_id(str(script_id))
        if script is None:
            raise NotFoundError(message=SCRIPT_NOT_FOUND_ERROR, detail={"script_id": str(script_id)})
    except Exception as exc:
        return to_json_response(
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )

    return ScriptDetail(
        id=str(script.id),
        name=script.name,
        description=script.description,
        created_at=script.created_at,
        documents=[
            DocumentView(
                id=str(doc.id),
                filename=doc.filename,
                status=doc.status,
                page_count=doc.page_count,
                created_at=doc.created_at,
            )
            for doc in script.documents
        ],
    )
