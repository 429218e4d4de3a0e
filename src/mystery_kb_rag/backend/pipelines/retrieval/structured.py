# src/mystery_kb_rag/backend/pipelines/retrieval/structured.py

"""
[职责] 结构化检索适配器：把 StructuredFilters 变体翻译为实体表等值查询，并将行转换为带来源与名次分的 RankedItem。
[边界] 不做模糊匹配/排序；无 entity_kind（UntypedFilters 或 None）时直接返回空列表且不访问存储。
[上游关系] executor 在 structured/hybrid 分支调用；search_service 直接调用。
[下游关系] fusion 以结果顺序计算 RRF 名次。
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mystery_kb_rag.backend.db.repo.entity_repo import EntityRepo
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.retrieval.filters import StructuredFilters
from mystery_kb_rag.backend.pipelines.retrieval.payloads import build_payload
from mystery_kb_rag.backend.pipelines.retrieval.types import Provenance, RankedItem
from mystery_kb_rag.backend.utils.constants import UNKNOWN_DOCUMENT_NAME
from mystery_kb_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("retrieval.structured")


def rank_score(position: int) -> float:
    """结构化结果的名次分：1 / (1 + position)。"""
    return 1.0 / (1.0 + float(position))


async def structured_search(
    filters: Optional[StructuredFilters],
    *,
    store: async_sessionmaker[AsyncSession],
    deadline: Optional[RunDeadline] = None,
) -> List[RankedItem]:
    """
    [职责] 执行结构化检索。
    [边界] 存储异常以 DataAccessError 传播；每次调用使用独立会话（可与语义检索并发）。
    [上游关系] execute_search / search_service。
    [下游关系] List[RankedItem]（kind=filters.entity_kind）。
    """
    kind = getattr(filters, "entity_kind", None)
    table = getattr(filters, "table", None)
    if filters is None or kind is None or not table:
        return []  # docstring: 无可查询表

    conditions = filters.conditions()
    deadline = deadline or RunDeadline.unbounded()

    async with store() as session:
        repo = EntityRepo(session)
        rows = await deadline.run(repo.structured_query(table, conditions), stage="structured_search")

    items: List[RankedItem] = []
    for position, row in enumerate(rows):
        items.append(
            RankedItem(
                id=row.id,
                entity_kind=kind,
                payload=build_payload(kind, row.fields),
                provenance=Provenance(
                    document_name=row.document_name or UNKNOWN_DOCUMENT_NAME,
                    script_name=row.script_name or None,
                    page_start=row.page_start,
                    page_end=row.page_end,
                ),
                score=rank_score(position),
            )
        )

    log_event(
        logger,
        logging.INFO,
        "structured_search.done",
        fields={"entity_kind": kind, "conditions": [c for c, _ in conditions], "hits": len(items)},
    )
    return items
