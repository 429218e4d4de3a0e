# src/mystery_kb_rag/backend/services/search_service.py

"""
[职责] search_service：/search 的服务入口，直接以用户给出的过滤条件与查询文本执行结构化/语义检索（不经过意图分类与回答生成）。
[边界] 过滤名 -> 结构化过滤变体的映射在此完成（首个命中的过滤决定 entity kind）；两路同时存在时 RRF 融合，否则原样返回单路结果。
[上游关系] api/routers/search.py。
[下游关系] executor.execute_search（以合成的 IntentClassification 复用分派逻辑）与 fusion.fuse_rrf。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from mystery_kb_rag.backend.pipelines.base.context import PipelineDeps
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.retrieval.executor import execute_search
from mystery_kb_rag.backend.pipelines.retrieval.filters import build_structured_filters
from mystery_kb_rag.backend.pipelines.retrieval.fusion import fuse_rrf
from mystery_kb_rag.backend.pipelines.retrieval.intent import IntentClassification
from mystery_kb_rag.backend.pipelines.retrieval.types import QueryKind, RankedItem
from mystery_kb_rag.backend.utils.errors import BadRequestError
from mystery_kb_rag.backend.utils.logging_ import get_logger, hash_text, log_event


logger = get_logger("services.search")

MISSING_QUERY_MESSAGE = "请提供查询条件：query（自然语言查询）或 filters（结构化条件）至少需要一个"
NO_MATCH_MESSAGE = "未找到匹配的结果，建议调整查询条件或使用更宽泛的搜索词"


@dataclass
class SearchResult:
    """检索结果：items + total + 空结果提示（可选）。"""

    items: List[RankedItem]
    total: int
    message: Optional[str] = None


def _present(value: Any) -> bool:
    return value is not None and value != ""


def map_search_filters(filters: Mapping[str, Any]) -> Dict[str, Any]:
    """
    [职责] 用户侧过滤名 -> 扁平结构化过滤字段（含 entity_type）。
    [边界] 多个过滤指向不同实体时首个生效（entity_type 与 type 先到先得）；script_id 透传。
    [上游关系] run_search。
    [下游关系] build_structured_filters。
    """
    mapped: Dict[str, Any] = {}

    if _present(filters.get("script_id")):
        mapped["script_id"] = filters["script_id"]

    if _present(filters.get("trick_type")):
        mapped["entity_type"] = "trick"
        mapped["type"] = filters["trick_type"]
    if _present(filters.get("character_identity")):
        mapped.setdefault("entity_type", "character")
        mapped["role"] = filters["character_identity"]
    if _present(filters.get("era")):
        mapped.setdefault("entity_type", "story_background")
        mapped["era"] = filters["era"]
    if filters.get("act_count") is not None:
        mapped.setdefault("entity_type", "script_format")
        mapped["act_count"] = filters["act_count"]
    if _present(filters.get("clue_type")):
        mapped.setdefault("entity_type", "clue")
        mapped.setdefault("type", filters["clue_type"])
    if _present(filters.get("misdirection_type")):
        mapped.setdefault("entity_type", "misdirection")
        mapped.setdefault("type", filters["misdirection_type"])
    if _present(filters.get("play_type")):
        mapped.setdefault("entity_type", "game_mechanics")
        mapped["core_gameplay_type"] = filters["play_type"]
    if _present(filters.get("narrative_structure_type")):
        mapped.setdefault("entity_type", "narrative_technique")
        mapped["structure_type"] = filters["narrative_structure_type"]
    if filters.get("player_count") is not None:
        mapped.setdefault("entity_type", "script_metadata")
        mapped["min_players"] = filters["player_count"]
        mapped["max_players"] = filters["player_count"]

    return mapped


async def run_search(
    *,
    deps: PipelineDeps,
    query: Optional[str] = None,
    filters: Optional[Mapping[str, Any]] = None,
    deadline: Optional[RunDeadline] = None,
) -> SearchResult:
    """
    [职责] 执行 /search：filters -> 结构化，query -> 语义，二者皆有 -> 并发后 RRF 融合。
    [边界] 二者皆无抛 BadRequestError；过滤枚举越界抛 BadRequestError；检索错误原样传播。
    [上游关系] api/routers/search.py。
    [下游关系] SearchResult（空结果附带提示文案）。
    """
    text = str(query or "").strip()
    raw_filters = dict(filters or {})
    has_query = bool(text)
    has_filters = bool(raw_filters)

    if not has_query and not has_filters:
        raise BadRequestError(message=MISSING_QUERY_MESSAGE)

    structured_filters = None
    if has_filters:
        try:
            structured_filters = build_structured_filters(map_search_filters(raw_filters))
        except ValidationError as exc:
            raise BadRequestError(
                message="invalid search filters",
                detail={"errors": [str(e.get("msg", "")) for e in exc.errors()]},
                cause=exc,
            ) from exc

    kind: QueryKind = "hybrid" if has_query and has_filters else ("structured" if has_filters else "semantic")
    classification = IntentClassification.create(
        kind,
        filters=structured_filters,
        semantic_query=text or None,
    )
    outcome = await execute_search(
        classification,
        query=text,
        embedder=deps.embedder,
        store=deps.session_factory,
        limit=deps.semantic_limit,
        threshold=deps.semantic_threshold,
        deadline=deadline,
    )

    if kind == "hybrid":
        items = fuse_rrf(outcome.structured, outcome.semantic, k=deps.rrf_k)
    else:
        items = [*outcome.structured, *outcome.semantic]

    log_event(
        logger,
        logging.INFO,
        "search.done",
        fields={
            "query_kind": kind,
            "query_hash": hash_text(text) if text else None,
            "filter_keys": sorted(raw_filters),
            "hits": len(items),
        },
    )
    if not items:
        return SearchResult(items=[], total=0, message=NO_MATCH_MESSAGE)
    return SearchResult(items=items, total=len(items))
