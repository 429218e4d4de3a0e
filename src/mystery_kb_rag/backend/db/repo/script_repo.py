# src/mystery_kb_rag/backend/db/repo/script_repo.py

"""
[职责] ScriptRepo：剧本的创建、列表（含文档数）与详情（含文档列表）。
[边界] 不校验名称（由 router 负责 400）；不做分页。
[上游关系] api/routers/scripts.py。
[下游关系] ScriptModel / DocumentModel。
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.doc import DocumentModel, ScriptModel
from .errors import data_access_guard


class ScriptRepo:
    """Script repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, *, name: str, description: Optional[str] = None) -> ScriptModel:
        script = ScriptModel(name=name, description=description)
        with data_access_guard("scripts", op="insert"):
            self._session.add(script)
            await self._session.flush()
        return script

    async def get_by_id(self, script_id: str) -> Optional[ScriptModel]:
        """Fetch script by id (documents eagerly loaded via selectin)."""
        with data_access_guard("scripts", op="get"):
            return await self._session.get(ScriptModel, script_id)

    async def list_with_document_count(self) -> List[Tuple[ScriptModel, int]]:
        """按 created_at 倒序列出剧本及其文档数。"""
        count_col = func.count(DocumentModel.id)
        stmt = (
            select(ScriptModel, count_col)
            .outerjoin(DocumentModel, DocumentModel.script_id == ScriptModel.id)
            .group_by(ScriptModel.id)
            .order_by(ScriptModel.created_at.desc())
        )
        with data_access_guard("scripts", op="list"):
            rows = (await self._session.execute(stmt)).all()
        return [(script, int(count or 0)) for script, count in rows]
