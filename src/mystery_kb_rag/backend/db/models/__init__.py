# src/mystery_kb_rag/backend/db/models/__init__.py

"""
[职责] db.models 聚合导出：集中声明 ORM Models，供 init_db 注册元数据与应用层统一导入。
[边界] 仅做导入与 __all__ 暴露；不包含任何业务逻辑。
[上游关系] 依赖各模型文件（doc/entity/chat）。
[下游关系] backend.db.engine / repo 层 / service 层导入本模块以加载元数据。
"""

from __future__ import annotations

from ..base import Base
from .doc import ScriptModel, DocumentModel, DocumentChunkModel
from .entity import (
    ENTITY_TABLES,
    CharacterModel,
    ClueModel,
    EmotionalDesignModel,
    GameMechanicsModel,
    MisdirectionModel,
    NarrativeTechniqueModel,
    PlayerScriptModel,
    ReasoningChainModel,
    ScriptFormatModel,
    ScriptMetadataModel,
    ScriptStructureModel,
    StoryBackgroundModel,
    TrickModel,
)
from .chat import ChatSessionModel, ChatMessageModel

__all__ = [
    # base
    "Base",
    # scripts + docs
    "ScriptModel",
    "DocumentModel",
    "DocumentChunkModel",
    # structured entities
    "ENTITY_TABLES",
    "TrickModel",
    "CharacterModel",
    "ScriptStructureModel",
    "StoryBackgroundModel",
    "ScriptFormatModel",
    "PlayerScriptModel",
    "ClueModel",
    "ReasoningChainModel",
    "MisdirectionModel",
    "ScriptMetadataModel",
    "GameMechanicsModel",
    "NarrativeTechniqueModel",
    "EmotionalDesignModel",
    # chat
    "ChatSessionModel",
    "ChatMessageModel",
]
