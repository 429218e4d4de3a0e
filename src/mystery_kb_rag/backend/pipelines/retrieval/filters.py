# src/mystery_kb_rag/backend/pipelines/retrieval/filters.py

"""
[职责] StructuredFilters 封闭联合：按 entity_kind 区分的 13 个过滤变体 + UntypedFilters（无 kind，不可查询）；提供从原始字段表构建变体的唯一入口。
[边界] 只做字段归属与枚举校验；不访问存储；不属于该 kind 的字段被丢弃（记录日志），枚举越界抛 ValidationError。
[上游关系] intent 分类器（模型输出）与 search_service（HTTP 过滤参数）调用 build_structured_filters。
[下游关系] structured_search 读取 table/conditions()。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from mystery_kb_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("retrieval.filters")

TrickType = Literal["locked_room", "alibi", "weapon_hiding", "poisoning", "disguise", "other"]
ClueType = Literal["physical_evidence", "testimony", "document", "environmental"]
MisdirectionType = Literal["false_clue", "time_misdirection", "identity_disguise", "motive_misdirection"]
CharacterRole = Literal["murderer", "detective", "suspect", "victim", "npc"]
Difficulty = Literal["beginner", "intermediate", "hardcore"]
StructureType = Literal["linear", "nonlinear", "multi_threaded", "flashback"]
Perspective = Literal["first_person", "third_person", "multi_perspective"]


class _FiltersBase(BaseModel):
    """所有变体共享：可选 script_id；不可变；禁止未声明字段。"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    table: Optional[str] = Field(default=None, exclude=True)  # 子类覆盖为固定表名
    script_id: Optional[str] = None

    def conditions(self) -> List[Tuple[str, Any]]:
        """
        [职责] 导出等值过滤条件：script_id 在首位，其后为非空业务字段（声明顺序）。
        [边界] None 值不生成条件；entity_kind/table 不参与过滤。
        """
        out: List[Tuple[str, Any]] = []
        if self.script_id is not None:
            out.append(("script_id", self.script_id))
        for name in type(self).model_fields:
            if name in {"entity_kind", "table", "script_id"}:
                continue
            value = getattr(self, name)
            if value is not None:
                out.append((name, value))
        return out


class UntypedFilters(_FiltersBase):
    """无 entity_kind 的过滤对象：没有可查询的表，结构化检索返回空列表。"""

    entity_kind: None = None


class TrickFilters(_FiltersBase):
    entity_kind: Literal["trick"] = "trick"
    table: Literal["tricks"] = Field(default="tricks", exclude=True)
    type: Optional[TrickType] = None


class CharacterFilters(_FiltersBase):
    entity_kind: Literal["character"] = "character"
    table: Literal["characters"] = Field(default="characters", exclude=True)
    role: Optional[CharacterRole] = None


class ScriptStructureFilters(_FiltersBase):
    entity_kind: Literal["script_structure"] = "script_structure"
    table: Literal["script_structures"] = Field(default="script_structures", exclude=True)


class StoryBackgroundFilters(_FiltersBase):
    entity_kind: Literal["story_background"] = "story_background"
    table: Literal["story_backgrounds"] = Field(default="story_backgrounds", exclude=True)
    era: Optional[str] = None


class ScriptFormatFilters(_FiltersBase):
    entity_kind: Literal["script_format"] = "script_format"
    table: Literal["script_formats"] = Field(default="script_formats", exclude=True)
    act_count: Optional[int] = None


class PlayerScriptFilters(_FiltersBase):
    entity_kind: Literal["player_script"] = "player_script"
    table: Literal["player_scripts"] = Field(default="player_scripts", exclude=True)


class ClueFilters(_FiltersBase):
    entity_kind: Literal["clue"] = "clue"
    table: Literal["clues"] = Field(default="clues", exclude=True)
    type: Optional[ClueType] = None


class ReasoningChainFilters(_FiltersBase):
    entity_kind: Literal["reasoning_chain"] = "reasoning_chain"
    table: Literal["reasoning_chains"] = Field(default="reasoning_chains", exclude=True)


class MisdirectionFilters(_FiltersBase):
    entity_kind: Literal["misdirection"] = "misdirection"
    table: Literal["misdirections"] = Field(default="misdirections", exclude=True)
    type: Optional[MisdirectionType] = None


class ScriptMetadataFilters(_FiltersBase):
    entity_kind: Literal["script_metadata"] = "script_metadata"
    table: Literal["script_metadata"] = Field(default="script_metadata", exclude=True)
    difficulty: Optional[Difficulty] = None
    min_players: Optional[int] = None
    max_players: Optional[int] = None


class GameMechanicsFilters(_FiltersBase):
    entity_kind: Literal["game_mechanics"] = "game_mechanics"
    table: Literal["game_mechanics"] = Field(default="game_mechanics", exclude=True)
    core_gameplay_type: Optional[str] = None


class NarrativeTechniqueFilters(_FiltersBase):
    entity_kind: Literal["narrative_technique"] = "narrative_technique"
    table: Literal["narrative_techniques"] = Field(default="narrative_techniques", exclude=True)
    structure_type: Optional[StructureType] = None
    perspective: Optional[Perspective] = None


class EmotionalDesignFilters(_FiltersBase):
    entity_kind: Literal["emotional_design"] = "emotional_design"
    table: Literal["emotional_designs"] = Field(default="emotional_designs", exclude=True)


StructuredFilters = Union[
    TrickFilters,
    CharacterFilters,
    ScriptStructureFilters,
    StoryBackgroundFilters,
    ScriptFormatFilters,
    PlayerScriptFilters,
    ClueFilters,
    ReasoningChainFilters,
    MisdirectionFilters,
    ScriptMetadataFilters,
    GameMechanicsFilters,
    NarrativeTechniqueFilters,
    EmotionalDesignFilters,
    UntypedFilters,
]

FILTERS_BY_KIND: Dict[str, Type[_FiltersBase]] = {
    "trick": TrickFilters,
    "character": CharacterFilters,
    "script_structure": ScriptStructureFilters,
    "story_background": StoryBackgroundFilters,
    "script_format": ScriptFormatFilters,
    "player_script": PlayerScriptFilters,
    "clue": ClueFilters,
    "reasoning_chain": ReasoningChainFilters,
    "misdirection": MisdirectionFilters,
    "script_metadata": ScriptMetadataFilters,
    "game_mechanics": GameMechanicsFilters,
    "narrative_technique": NarrativeTechniqueFilters,
    "emotional_design": EmotionalDesignFilters,
}  # docstring: entity kind -> 过滤变体

_KIND_KEYS = ("entity_kind", "entity_type")  # docstring: 模型输出使用 entity_type，内部使用 entity_kind


def build_structured_filters(raw: Optional[Mapping[str, Any]]) -> Optional[StructuredFilters]:
    """
    [职责] 将原始字段表（模型输出/HTTP 参数）转换为封闭联合中的一个变体。
    [边界] raw 为 None 或全空返回 None；无 kind 返回 UntypedFilters（仅保留 script_id）；
           未知 kind 视为无 kind；不属于该 kind 的字段丢弃并记录；枚举越界抛 pydantic ValidationError。
    [上游关系] intent.classify_intent / search_service.map_search_filters。
    [下游关系] IntentClassification.filters / structured_search。
    """
    if raw is None:
        return None
    data = {k: v for k, v in dict(raw).items() if v is not None}
    if not data:
        return None

    kind = None
    for key in _KIND_KEYS:
        if key in data:
            kind = data.pop(key)
    model = FILTERS_BY_KIND.get(str(kind)) if kind is not None else None
    if model is None:
        model = UntypedFilters
        if kind is not None:
            log_event(logger, logging.WARNING, "filters.unknown_kind", fields={"entity_kind": str(kind)})

    allowed = {name for name in model.model_fields if name not in {"entity_kind", "table"}}
    dropped = sorted(k for k in data if k not in allowed)
    if dropped:
        log_event(
            logger,
            logging.INFO,
            "filters.fields_dropped",
            fields={"entity_kind": getattr(model, "model_fields")["entity_kind"].default, "dropped": dropped},
        )
    kept = {k: v for k, v in data.items() if k in allowed}
    return model(**kept)  # type: ignore[return-value]
