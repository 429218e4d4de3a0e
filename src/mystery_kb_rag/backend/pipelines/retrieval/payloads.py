# src/mystery_kb_rag/backend/pipelines/retrieval/payloads.py

"""
[职责] 检索结果 payload 的和类型：13 类结构化实体各一个 pydantic 模型 + ChunkPayload（文档分块）+ GenericPayload（兜底字段表）。
[边界] 只描述字段形状；不做业务校验（抽取阶段已校验）；extra="allow" 使引用列（document_id/script_id/...）原样保留。
[上游关系] structured/semantic 适配器用 build_payload(kind, fields) 将存储行转换为 payload。
[下游关系] RankedItem.payload；synthesizer 以 to_fields() 序列化为上下文 JSON。
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    def to_fields(self) -> Dict[str, Any]:
        """还原为存储行字段表（包含 extra 引用列）。"""
        return self.model_dump(mode="json")


class ScriptMetadataPayload(_PayloadBase):
    title: Optional[str] = None
    author: Optional[str] = None
    publisher: Optional[str] = None
    publish_year: Optional[int] = None
    min_players: Optional[int] = None
    max_players: Optional[int] = None
    duration_minutes: Optional[int] = None
    difficulty: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class TrickPayload(_PayloadBase):
    name: Optional[str] = None
    type: Optional[str] = None
    mechanism: Optional[str] = None
    key_elements: List[str] = Field(default_factory=list)
    weakness: Optional[str] = None


class CharacterPayload(_PayloadBase):
    name: Optional[str] = None
    role: Optional[str] = None
    motivation: Optional[str] = None
    personality_traits: List[str] = Field(default_factory=list)
    relationships: List[Dict[str, Any]] = Field(default_factory=list)


class ScriptStructurePayload(_PayloadBase):
    timeline_events: List[Dict[str, Any]] = Field(default_factory=list)
    scenes: List[Dict[str, Any]] = Field(default_factory=list)
    acts: List[Dict[str, Any]] = Field(default_factory=list)


class StoryBackgroundPayload(_PayloadBase):
    era: Optional[str] = None
    location: Optional[str] = None
    worldview: Optional[str] = None
    social_environment: Optional[str] = None


class ScriptFormatPayload(_PayloadBase):
    act_count: Optional[int] = None
    has_separate_clue_book: Optional[bool] = None
    has_public_info_page: Optional[bool] = None
    layout_style: Optional[str] = None
    act_compositions: List[Dict[str, Any]] = Field(default_factory=list)


class PlayerScriptPayload(_PayloadBase):
    character_name: Optional[str] = None
    total_word_count: Optional[int] = None
    sections: List[Dict[str, Any]] = Field(default_factory=list)


class CluePayload(_PayloadBase):
    name: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    direction: Optional[str] = None
    associated_characters: List[str] = Field(default_factory=list)


class ReasoningChainPayload(_PayloadBase):
    name: Optional[str] = None
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    conclusion: Optional[str] = None


class MisdirectionPayload(_PayloadBase):
    name: Optional[str] = None
    type: Optional[str] = None
    target: Optional[str] = None
    resolution: Optional[str] = None


class GameMechanicsPayload(_PayloadBase):
    core_gameplay_type: Optional[str] = None
    special_phases: List[Dict[str, Any]] = Field(default_factory=list)
    victory_conditions: Optional[Dict[str, str]] = None


class NarrativeTechniquePayload(_PayloadBase):
    perspective: Optional[str] = None
    structure_type: Optional[str] = None
    suspense_techniques: List[Dict[str, Any]] = Field(default_factory=list)
    foreshadowings: List[Dict[str, Any]] = Field(default_factory=list)


class EmotionalDesignPayload(_PayloadBase):
    target_emotions: List[str] = Field(default_factory=list)
    emotional_climaxes: List[Dict[str, Any]] = Field(default_factory=list)
    emotional_arcs: List[Dict[str, Any]] = Field(default_factory=list)


class ChunkPayload(_PayloadBase):
    """文档分块：仅 content + chunk_index。"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    content: str
    chunk_index: int = 0


class GenericPayload(_PayloadBase):
    """兜底：任意字段表（仅需来源/分数的展示代码，或行字段无法映射到具体模型时）。"""


Payload = Union[
    ScriptMetadataPayload,
    TrickPayload,
    CharacterPayload,
    ScriptStructurePayload,
    StoryBackgroundPayload,
    ScriptFormatPayload,
    PlayerScriptPayload,
    CluePayload,
    ReasoningChainPayload,
    MisdirectionPayload,
    GameMechanicsPayload,
    NarrativeTechniquePayload,
    EmotionalDesignPayload,
    ChunkPayload,
    GenericPayload,
]

PAYLOAD_BY_KIND: Dict[str, Type[_PayloadBase]] = {
    "trick": TrickPayload,
    "character": CharacterPayload,
    "script_structure": ScriptStructurePayload,
    "story_background": StoryBackgroundPayload,
    "script_format": ScriptFormatPayload,
    "player_script": PlayerScriptPayload,
    "clue": CluePayload,
    "reasoning_chain": ReasoningChainPayload,
    "misdirection": MisdirectionPayload,
    "script_metadata": ScriptMetadataPayload,
    "game_mechanics": GameMechanicsPayload,
    "narrative_technique": NarrativeTechniquePayload,
    "emotional_design": EmotionalDesignPayload,
    "document_chunk": ChunkPayload,
}  # docstring: entity kind -> payload 模型


def build_payload(kind: str, fields: Mapping[str, Any]) -> Payload:
    """
    [职责] 将存储行字段表转换为对应 kind 的 payload 模型。
    [边界] 未知 kind 或字段形状不匹配（历史脏数据）时回退 GenericPayload，不丢字段。
    [上游关系] structured_search / semantic_search。
    [下游关系] RankedItem.payload。
    """
    model = PAYLOAD_BY_KIND.get(kind)
    data = dict(fields)
    if model is None:
        return GenericPayload(**data)
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except ValidationError:
        return GenericPayload(**data)
