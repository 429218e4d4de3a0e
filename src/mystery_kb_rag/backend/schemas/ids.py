# src/mystery_kb_rag/backend/schemas/ids.py

"""
[职责] ID 契约层：统一剧本/文档/分块/实体/会话等 ID 的类型别名、生成策略（UUID v4 string）。
[边界] 不依赖数据库 ORM；不包含业务字段。
[上游关系] 无（纯工具/契约层）。
[下游关系] db models、pipelines 与 api 在创建/传递实体引用时使用。
"""

from __future__ import annotations

from typing import NewType
from uuid import uuid4


UUIDStr = NewType("UUIDStr", str)  # docstring: 统一 UUID 字符串类型（运行时仍为 str）

ScriptId = UUIDStr  # docstring: scripts.id
DocumentId = UUIDStr  # docstring: documents.id
ChunkId = UUIDStr  # docstring: document_chunks.id
EntityId = UUIDStr  # docstring: 13 类结构化实体表的主键
SessionId = UUIDStr  # docstring: chat_sessions.id
MessageId = UUIDStr  # docstring: chat_messages.id


def new_uuid() -> UUIDStr:
    """Generate UUID v4 as string."""  # docstring: 系统内唯一 ID 的默认生成策略
    return UUIDStr(str(uuid4()))
