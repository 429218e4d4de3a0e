# src/mystery_kb_rag/backend/pipelines/retrieval/executor.py

"""
[职责] 检索执行器：按 query_kind 分派结构化 / 语义检索；hybrid 时两路并发执行并在继续前汇合。
[边界] 不融合、不重试；任一路失败即整体失败（取消另一路，原异常原样抛出，不返回部分结果）。
[上游关系] pipeline.search 阶段；search_service（以合成的 IntentClassification 复用）。
[下游关系] SearchOutcome 交给 fuse_rrf。
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from llama_index.core.base.embeddings.base import BaseEmbedding
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.retrieval.intent import IntentClassification
from mystery_kb_rag.backend.pipelines.retrieval.semantic import semantic_search
from mystery_kb_rag.backend.pipelines.retrieval.structured import structured_search
from mystery_kb_rag.backend.pipelines.retrieval.types import RankedItem, SearchOutcome
from mystery_kb_rag.backend.utils.constants import DEFAULT_SEMANTIC_LIMIT, DEFAULT_SEMANTIC_THRESHOLD
from mystery_kb_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("retrieval.executor")


async def _gather_both(
    structured_coro,
    semantic_coro,
) -> tuple[List[RankedItem], List[RankedItem]]:
    """
    [职责] 并发执行两路检索（两个任务均在任一完成前发出）。
    [边界] 首个失败的异常原样抛出；另一任务被取消并等待其结束。
    """
    structured_task = asyncio.create_task(structured_coro)
    semantic_task = asyncio.create_task(semantic_coro)
    tasks = (structured_task, semantic_task)
    try:
        structured, semantic = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)  # docstring: 等待被取消的任务退出
        raise
    return structured, semantic


async def execute_search(
    classification: IntentClassification,
    *,
    query: str,
    embedder: BaseEmbedding,
    store: async_sessionmaker[AsyncSession],
    limit: int = DEFAULT_SEMANTIC_LIMIT,
    threshold: float = DEFAULT_SEMANTIC_THRESHOLD,
    deadline: Optional[RunDeadline] = None,
) -> SearchOutcome:
    """
    [职责] 按分类执行检索。
    [边界] structured -> 仅结构化；semantic -> 仅语义（文本为 semantic_query 或原始 query）；hybrid -> 并发两路。
    [上游关系] run_retrieval_stages / search_service.run_search。
    [下游关系] SearchOutcome（未参与的一路为空列表）。
    """
    deadline = deadline or RunDeadline.unbounded()
    deadline.check("search")
    kind = classification.query_kind
    text = classification.semantic_text(query)

    if kind == "structured":
        outcome = SearchOutcome(
            structured=await structured_search(classification.filters, store=store, deadline=deadline),
        )
    elif kind == "semantic":
        outcome = SearchOutcome(
            semantic=await semantic_search(
                text, embedder=embedder, store=store, limit=limit, threshold=threshold, deadline=deadline
            ),
        )
    else:
        structured, semantic = await _gather_both(
            structured_search(classification.filters, store=store, deadline=deadline),
            semantic_search(text, embedder=embedder, store=store, limit=limit, threshold=threshold, deadline=deadline),
        )
        outcome = SearchOutcome(structured=structured, semantic=semantic)

    log_event(
        logger,
        logging.INFO,
        "search.executed",
        fields={
            "query_kind": kind,
            "structured_hits": len(outcome.structured),
            "semantic_hits": len(outcome.semantic),
        },
    )
    return outcome
