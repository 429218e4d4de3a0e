# src/mystery_kb_rag/backend/db/repo/session_repo.py

"""
[职责] ChatSessionRepo：会话创建/查询与消息追加/历史加载。
[边界] 不做消息裁剪与 token 窗口；并发写入同一会话不保证顺序。
[上游关系] services/chat_service.py。
[下游关系] ChatSessionModel / ChatMessageModel。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.chat import ChatMessageModel, ChatSessionModel
from .errors import data_access_guard


class ChatSessionRepo:
    """Chat session repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_session(self) -> ChatSessionModel:
        obj = ChatSessionModel()
        with data_access_guard("chat_sessions", op="insert"):
            self._session.add(obj)
            await self._session.flush()  # docstring: 获取 id
        return obj

    async def get_session(self, session_id: str) -> Optional[ChatSessionModel]:
        with data_access_guard("chat_sessions", op="get"):
            return await self._session.get(ChatSessionModel, session_id)

    async def add_message(
        self,
        *,
        session_id: str,
        role: str,
        content: str,
        sources: Optional[List[Dict[str, Any]]] = None,
    ) -> ChatMessageModel:
        msg = ChatMessageModel(
            session_id=session_id,
            role=role,
            content=content,
            sources=sources,
        )
        with data_access_guard("chat_messages", op="insert"):
            self._session.add(msg)
            await self._session.flush()
        return msg

    async def list_messages(self, session_id: str) -> List[ChatMessageModel]:
        """按 created_at 升序加载会话全部消息。"""
        stmt = (
            select(ChatMessageModel)
            .where(ChatMessageModel.session_id == session_id)
            .order_by(ChatMessageModel.created_at.asc())
        )
        with data_access_guard("chat_messages", op="list"):
            res = await self._session.scalars(stmt)
            return list(res.all())
