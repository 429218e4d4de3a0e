# src/mystery_kb_rag/backend/pipelines/retrieval/semantic.py

"""
[职责] 语义检索适配器：对查询文本做 embedding，执行向量相似度查询（阈值 + 上限），回填文档名并产出 document_chunk 结果。
[边界] 空白文本直接返回空列表（不调用 embedding）；embedding 失败包装为 UpstreamModelError；存储失败为 DataAccessError。
[上游关系] executor 在 semantic/hybrid 分支调用；search_service 直接调用。
[下游关系] fusion 以相似度降序的名次计算 RRF。
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from llama_index.core.base.embeddings.base import BaseEmbedding
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mystery_kb_rag.backend.db.repo.chunk_repo import ChunkRepo
from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.retrieval.payloads import ChunkPayload
from mystery_kb_rag.backend.pipelines.retrieval.types import DOCUMENT_CHUNK_KIND, Provenance, RankedItem
from mystery_kb_rag.backend.utils.constants import (
    DEFAULT_SEMANTIC_LIMIT,
    DEFAULT_SEMANTIC_THRESHOLD,
    UNKNOWN_DOCUMENT_NAME,
)
from mystery_kb_rag.backend.utils.errors import DomainError, UpstreamModelError
from mystery_kb_rag.backend.utils.logging_ import get_logger, hash_text, log_event, truncate_text


logger = get_logger("retrieval.semantic")


async def embed_query(
    text: str,
    *,
    embedder: BaseEmbedding,
    deadline: Optional[RunDeadline] = None,
) -> Sequence[float]:
    """
    [职责] 对查询文本生成向量（LlamaIndex aget_query_embedding）。
    [边界] 第三方异常统一包装为 UpstreamModelError；截止时间/取消错误原样传播。
    """
    deadline = deadline or RunDeadline.unbounded()
    try:
        return await deadline.run(embedder.aget_query_embedding(text), stage="embed")
    except DomainError:
        raise
    except Exception as exc:
        raise UpstreamModelError(
            message="embedding call failed",
            detail={"model": str(getattr(embedder, "model_name", "") or ""), "error_type": type(exc).__name__},
            cause=exc,
        ) from exc


async def semantic_search(
    text: str,
    *,
    embedder: BaseEmbedding,
    store: async_sessionmaker[AsyncSession],
    limit: int = DEFAULT_SEMANTIC_LIMIT,
    threshold: float = DEFAULT_SEMANTIC_THRESHOLD,
    deadline: Optional[RunDeadline] = None,
) -> List[RankedItem]:
    """
    [职责] 执行语义检索。
    [边界] text 去空白后为空返回 []；相似度需严格大于 threshold；最多 limit 条。
    [上游关系] execute_search / search_service。
    [下游关系] List[RankedItem]（kind=document_chunk，score=相似度）。
    """
    if not text or not text.strip():
        return []  # docstring: 空查询不调用 embedding

    deadline = deadline or RunDeadline.unbounded()
    vector = await embed_query(text, embedder=embedder, deadline=deadline)

    async with store() as session:
        repo = ChunkRepo(session)
        matches = await deadline.run(
            repo.vector_query(list(vector), limit=limit, threshold=threshold),
            stage="vector_query",
        )
        names = (
            await deadline.run(repo.document_names(m.document_id for m in matches), stage="document_names")
            if matches
            else {}
        )

    items = [
        RankedItem(
            id=m.id,
            entity_kind=DOCUMENT_CHUNK_KIND,
            payload=ChunkPayload(content=m.content, chunk_index=m.chunk_index),
            provenance=Provenance(
                document_name=names.get(m.document_id, UNKNOWN_DOCUMENT_NAME),
                page_start=m.page_start,
                page_end=m.page_end,
            ),
            score=m.similarity,
        )
        for m in matches
    ]

    log_event(
        logger,
        logging.INFO,
        "semantic_search.done",
        fields={
            "query_hash": hash_text(text),
            "query_preview": truncate_text(text, max_len=40),
            "limit": limit,
            "threshold": threshold,
            "hits": len(items),
        },
    )
    return items
