# src/mystery_kb_rag/backend/db/models/entity.py

"""
[职责] 13 类结构化实体表（诡计/角色/线索/误导/元数据等），由抽取流程写入，供结构化检索做等值过滤。
[边界] 子集合（关系/时间线/步骤等）以 JSON 列存储在父表；不做跨文档去重。
[上游关系] 抽取流程（不在本服务范围）写入行并回填 document_id/chunk_id/script_id/页码。
[下游关系] EntityRepo.structured_query 按 ENTITY_TABLES 选表查询并 join documents/scripts 生成来源信息。
"""

from __future__ import annotations

import uuid
from typing import Dict, Optional, Type

from sqlalchemy import Boolean, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, TimestampMixin


class EntityRefMixin(TimestampMixin):
    """
    [职责] 实体通用字段：主键、来源引用（document/chunk/script）、页码区间、置信度与审核状态。
    [边界] 页码可空（无法定位时引用不带页码）。
    """

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="实体ID（UUID字符串）",
    )
    document_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="来源文档ID",
    )
    chunk_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("document_chunks.id", ondelete="SET NULL"),
        nullable=True,
        comment="来源分块ID",
    )
    script_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("scripts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="所属剧本ID",
    )
    page_start: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="起始页码")
    page_end: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, comment="结束页码")
    confidence: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="字段级置信度（字段名 -> 0~1）",
    )
    review_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="pending_review",
        comment="approved/pending_review",
    )


class ScriptMetadataModel(Base, EntityRefMixin):
    __tablename__ = "script_metadata"

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    author: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    publisher: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    publish_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_players: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_players: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    difficulty: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # beginner/intermediate/hardcore
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class TrickModel(Base, EntityRefMixin):
    __tablename__ = "tricks"

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    mechanism: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    key_elements: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    weakness: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class CharacterModel(Base, EntityRefMixin):
    __tablename__ = "characters"

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    motivation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    personality_traits: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    relationships: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="[{related_character_name, relationship_type, description}]",
    )


class ScriptStructureModel(Base, EntityRefMixin):
    __tablename__ = "script_structures"

    timeline_events: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    scenes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    acts: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class StoryBackgroundModel(Base, EntityRefMixin):
    __tablename__ = "story_backgrounds"

    era: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    worldview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    social_environment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class ScriptFormatModel(Base, EntityRefMixin):
    __tablename__ = "script_formats"

    act_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    has_separate_clue_book: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    has_public_info_page: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    layout_style: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    act_compositions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class PlayerScriptModel(Base, EntityRefMixin):
    __tablename__ = "player_scripts"

    character_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    total_word_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sections: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class ClueModel(Base, EntityRefMixin):
    __tablename__ = "clues"

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    direction: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    associated_characters: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class ReasoningChainModel(Base, EntityRefMixin):
    __tablename__ = "reasoning_chains"

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    conclusion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MisdirectionModel(Base, EntityRefMixin):
    __tablename__ = "misdirections"

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    target: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class GameMechanicsModel(Base, EntityRefMixin):
    __tablename__ = "game_mechanics"

    core_gameplay_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    special_phases: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    victory_conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)


class NarrativeTechniqueModel(Base, EntityRefMixin):
    __tablename__ = "narrative_techniques"

    perspective: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    structure_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    suspense_techniques: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    foreshadowings: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


class EmotionalDesignModel(Base, EntityRefMixin):
    __tablename__ = "emotional_designs"

    target_emotions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    emotional_climaxes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    emotional_arcs: Mapped[list] = mapped_column(JSON, nullable=False, default=list)


ENTITY_TABLES: Dict[str, Type[Base]] = {
    "tricks": TrickModel,
    "characters": CharacterModel,
    "script_structures": ScriptStructureModel,
    "story_backgrounds": StoryBackgroundModel,
    "script_formats": ScriptFormatModel,
    "player_scripts": PlayerScriptModel,
    "clues": ClueModel,
    "reasoning_chains": ReasoningChainModel,
    "misdirections": MisdirectionModel,
    "script_metadata": ScriptMetadataModel,
    "game_mechanics": GameMechanicsModel,
    "narrative_techniques": NarrativeTechniqueModel,
    "emotional_designs": EmotionalDesignModel,
}  # docstring: 表名 -> ORM 模型（结构化检索的唯一查表入口）

ENTITY_REF_COLUMNS = frozenset(
    {"id", "document_id", "chunk_id", "script_id", "page_start", "page_end", "confidence", "review_status", "created_at"}
)  # docstring: 通用引用列（非业务字段）
