# src/mystery_kb_rag/backend/api/schemas_http/chat.py

"""
[职责] HTTP Chat Schema：定义 /chat 请求与会话消息列表的对外合同。
[边界] 不包含业务编排与 DB 语义；SSE 事件格式由 utils/sse.py 定义。
[上游关系] 前端发起 chat 请求。
[下游关系] routers/chat.py 调用 chat_service 并映射为本模块输出结构。
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ._common import CitationView, SessionId


class ChatRequest(BaseModel):
    """
    [职责] /chat 请求体：message 必填（空白由服务层返回 400），session_id 可选。
    [边界] 不在 schema 层拒绝空白 message（保持统一的 ErrorResponse 文案）。
    """

    model_config = ConfigDict(extra="ignore")

    message: str = Field(default="")  # docstring: 用户消息
    session_id: Optional[SessionId] = Field(default=None)  # docstring: 会话ID（缺省时创建新会话）


class ChatMessageView(BaseModel):
    """会话消息视图。"""

    id: str
    session_id: SessionId
    role: Literal["user", "assistant"]
    content: str
    sources: Optional[List[CitationView]] = None
    created_at: Optional[datetime] = None


class ChatMessagesResponse(BaseModel):
    session_id: SessionId
    messages: List[ChatMessageView] = Field(default_factory=list)
