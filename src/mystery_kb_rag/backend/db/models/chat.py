# src/mystery_kb_rag/backend/db/models/chat.py

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import ForeignKey, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base, TimestampMixin


class ChatSessionModel(Base, TimestampMixin):
    """
    [职责] 对话会话：承载多轮问答的消息序列。
    [边界] 无用户归属（无鉴权）；不存储检索中间结果。
    [上游关系] POST /chat 在缺少 session_id 时创建。
    [下游关系] ChatMessageModel 通过 session_id 归属。
    """

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="会话ID（UUID字符串）",
    )

    messages: Mapped[List["ChatMessageModel"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        lazy="noload",
    )


class ChatMessageModel(Base, TimestampMixin):
    """
    [职责] 会话消息：user 提问或 assistant 回答（附引用来源）。
    [边界] role 仅 user/assistant；sources 为 Citation 的 JSON 快照。
    [上游关系] chat_service.add_message 写入。
    [下游关系] get_session_history 转为 LLM 历史消息；GET /chat/sessions/{id}/messages 输出。
    """

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="消息ID（UUID字符串）",
    )

    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="所属会话ID",
    )

    role: Mapped[str] = mapped_column(String(16), nullable=False, comment="user/assistant")

    content: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="消息内容")

    sources: Mapped[Optional[list]] = mapped_column(
        JSON,
        nullable=True,
        comment="引用来源快照（assistant 消息）",
    )

    session: Mapped[ChatSessionModel] = relationship(back_populates="messages")
