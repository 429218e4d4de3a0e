# src/mystery_kb_rag/backend/api/routers/documents.py

"""
[职责] Documents Router：只读文档列表（处理状态、分块数、所属剧本），可按剧本过滤或分组。
[边界] 不处理上传/解析/抽取；group_by_script 时按首次出现顺序分组。
[上游关系] 前端文档管理页。
[下游关系] ChunkRepo.list_documents_with_chunk_count。
"""

from __future__ import annotations

from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mystery_kb_rag.backend.api.deps import get_session, get_trace_context
from mystery_kb_rag.backend.api.errors import to_json_response
from mystery_kb_rag.backend.api.schemas_http.documents import (
    DocumentGroup,
    DocumentGroupsResponse,
    DocumentListItem,
    DocumentListResponse,
    ScriptRef,
)
from mystery_kb_rag.backend.db.repo import ChunkRepo
from mystery_kb_rag.backend.schemas.audit import TraceContext


router = APIRouter(prefix="/documents", tags=["documents"])


def _group_by_script(items: List[DocumentListItem]) -> List[DocumentGroup]:
    groups: Dict[Optional[str], DocumentGroup] = {}
    for item in items:
        key = item.script_id
        if key not in groups:
            script = ScriptRef(id=key, name=item.script_name or "") if key else None
            groups[key] = DocumentGroup(script=script)
        groups[key].documents.append(item)
    return list(groups.values())


@router.get("", response_model=Union[DocumentListResponse, DocumentGroupsResponse])
async def list_documents(
    script_id: Optional[str] = Query(default=None),
    group_by_script: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
    trace_context: TraceContext = Depends(get_trace_context),
):
    """按上传时间倒序列出文档；group_by_script=true 时返回 {groups, total}。"""
    try:
        rows = await ChunkRepo(session).list_documents_with_chunk_count(script_id=script_id or None)
    except Exception as exc:
        return to_json_response(
            exc,
            trace_id=str(trace_context.trace_id),
            request_id=str(trace_context.request_id),
        )

    items = [
        DocumentListItem(
            id=str(doc.id),
            filename=doc.filename,
            status=doc.status,
            upload_date=doc.created_at,
            page_count=doc.page_count,
            chunk_count=count,
            script_id=str(doc.script_id) if doc.script_id else None,
            script_name=script_name,
        )
        for doc, script_name, count in rows
    ]
    if group_by_script:
        return DocumentGroupsResponse(groups=_group_by_script(items), total=len(items))
    return DocumentListResponse(items=items, total=len(items))
