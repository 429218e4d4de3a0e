# src/mystery_kb_rag/backend/pipelines/retrieval/intent.py

"""
[职责] 意图分类：一次结构化输出调用，把用户问题分为 structured / semantic / hybrid，并抽取结构化过滤条件与语义查询片段。
[边界] 不做检索；失败不重试、不回退默认分类（UpstreamModelError / SchemaMismatchError 原样传播）。
[上游关系] pipeline.classify 阶段调用；LLM 由 resolve_llm(ProviderConfig(purpose="intent"), temperature=0) 提供。
[下游关系] IntentClassification 交给 executor 选择检索分支。
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Optional

from llama_index.core.llms import LLM, ChatMessage, MessageRole
from llama_index.core.prompts import ChatPromptTemplate
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.generation.generator import predict_structured
from mystery_kb_rag.backend.pipelines.retrieval.filters import StructuredFilters, build_structured_filters
from mystery_kb_rag.backend.pipelines.retrieval.types import EntityKind, QueryKind
from mystery_kb_rag.backend.utils.errors import SchemaMismatchError
from mystery_kb_rag.backend.utils.logging_ import get_logger, hash_text, log_event


logger = get_logger("retrieval.intent")

INTENT_SYSTEM_PROMPT = """You are a query intent analyzer for a murder mystery (剧本杀) knowledge base.

Your job is to analyze the user's query and determine:
1. The query type: "structured", "semantic", or "hybrid"
2. Any structured filter conditions that can be extracted
3. The semantic search portion of the query (if any)

QUERY TYPE RULES:
- "structured": The query asks for specific filterable attributes (e.g., "找所有密室诡计", "列出所有侦探角色", "难度为硬核的剧本")
- "semantic": The query is a natural language question seeking understanding (e.g., "如何设计一个好的推理链", "什么样的叙事结构最吸引人")
- "hybrid": The query combines specific filters with a semantic question (e.g., "密室诡计中最巧妙的机关设计是什么", "民国时代的剧本有哪些独特的叙事手法")

STRUCTURED FILTER FIELDS:
- entity_type: The type of entity being queried (trick, character, script_metadata, etc.)
- type: For tricks (locked_room, alibi, weapon_hiding, poisoning, disguise, other), clues (physical_evidence, testimony, document, environmental), misdirections (false_clue, time_misdirection, identity_disguise, motive_misdirection)
- role: For characters (murderer, detective, suspect, victim, npc)
- era: For story backgrounds (e.g., "民国", "现代", "古代")
- difficulty: For script metadata (beginner, intermediate, hardcore)
- core_gameplay_type: For game mechanics (e.g., "推理投凶", "阵营对抗")
- structure_type: For narrative techniques (linear, nonlinear, multi_threaded, flashback)
- perspective: For narrative techniques (first_person, third_person, multi_perspective)
- min_players / max_players: For script metadata player count filters

Only include structured_filters when there are clear filterable conditions.
Only include semantic_query when there is a natural language component that needs semantic search."""

INTENT_HUMAN_TEMPLATE = "Analyze the following query:\n\n{query}"


class RawIntentFilters(BaseModel):
    """模型输出的扁平过滤字段（尚未按 entity kind 归属）。"""

    entity_type: Optional[EntityKind] = None
    type: Optional[str] = None
    role: Optional[str] = None
    era: Optional[str] = None
    difficulty: Optional[str] = None
    core_gameplay_type: Optional[str] = None
    structure_type: Optional[str] = None
    perspective: Optional[str] = None
    min_players: Optional[int] = None
    max_players: Optional[int] = None


class IntentOutput(BaseModel):
    """Structured output schema for query intent analysis."""

    query_type: QueryKind = Field(description="structured, semantic or hybrid")
    structured_filters: Optional[RawIntentFilters] = Field(default=None)
    semantic_query: Optional[str] = Field(default=None)


class IntentClassification(BaseModel):
    """
    [职责] 不可变的分类结果：query_kind + 过滤条件（仅 structured/hybrid）+ 语义查询（仅 semantic/hybrid）。
    [边界] 过滤条件永远是封闭联合中的变体（不会出现未归属的字段表）。
    [上游关系] classify_intent / search_service。
    [下游关系] execute_search。
    """

    model_config = ConfigDict(frozen=True)

    query_kind: QueryKind
    filters: Optional[StructuredFilters] = None
    semantic_query: Optional[str] = None

    @classmethod
    def create(
        cls,
        query_kind: QueryKind,
        *,
        filters: Optional[StructuredFilters] = None,
        semantic_query: Optional[str] = None,
    ) -> "IntentClassification":
        """按 query_kind 丢弃不适用的字段（semantic 不带过滤，structured 不带语义查询）。"""
        return cls(
            query_kind=query_kind,
            filters=filters if query_kind in ("structured", "hybrid") else None,
            semantic_query=semantic_query if query_kind in ("semantic", "hybrid") else None,
        )

    def semantic_text(self, query: str) -> str:
        """语义检索文本：semantic_query 缺省时回退为原始查询。"""
        return self.semantic_query if self.semantic_query is not None else query


def build_intent_prompt() -> ChatPromptTemplate:
    return ChatPromptTemplate(
        message_templates=[
            ChatMessage(role=MessageRole.SYSTEM, content=INTENT_SYSTEM_PROMPT),
            ChatMessage(role=MessageRole.USER, content=INTENT_HUMAN_TEMPLATE),
        ]
    )


def to_classification(output: IntentOutput) -> IntentClassification:
    """
    [职责] 模型输出 -> 封闭联合分类结果。
    [边界] 过滤字段枚举越界视为结构化输出不合法（SchemaMismatchError）。
    """
    raw_filters: Optional[dict[str, Any]] = (
        output.structured_filters.model_dump(exclude_none=True) if output.structured_filters else None
    )
    try:
        filters = build_structured_filters(raw_filters)
    except ValidationError as exc:
        raise SchemaMismatchError(
            message="intent filters do not match the expected schema",
            detail={"raw_output": output.model_dump_json()[:500], "error_type": type(exc).__name__},
            cause=exc,
        ) from exc
    return IntentClassification.create(output.query_type, filters=filters, semantic_query=output.semantic_query)


async def classify_intent(
    query: str,
    *,
    llm: LLM,
    deadline: Optional[RunDeadline] = None,
    mode: Literal["native", "json_prompt"] = "native",
) -> IntentClassification:
    """
    [职责] 对用户问题做意图分类（单次结构化输出调用）。
    [边界] 调用失败 -> UpstreamModelError；输出不合法 -> SchemaMismatchError；均不重试。
    [上游关系] pipeline.classify 阶段（mode 来自 ProviderConfig.structured_output_mode()）。
    [下游关系] IntentClassification。
    """
    output = await predict_structured(
        llm,
        IntentOutput,
        build_intent_prompt(),
        mode=mode,
        deadline=deadline,
        query=query,
    )
    classification = to_classification(output)

    log_event(
        logger,
        logging.INFO,
        "intent.classified",
        fields={
            "query_hash": hash_text(query),
            "query_kind": classification.query_kind,
            "entity_kind": getattr(classification.filters, "entity_kind", None),
            "has_semantic_query": classification.semantic_query is not None,
            "mode": mode,
        },
    )
    return classification
