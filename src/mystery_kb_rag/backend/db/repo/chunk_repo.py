# src/mystery_kb_rag/backend/db/repo/chunk_repo.py

"""
[职责] ChunkRepo：文档分块的向量相似度查询（余弦相似度 + 阈值 + 上限）、文档名批量解析与文档列表（含分块数）。
[边界] 相似度在进程内以 numpy 矩阵乘一次算出（embedding 以 JSON 存于 document_chunks）；维度不一致或零向量的分块跳过。
[上游关系] pipelines/retrieval/semantic.py 传入查询向量；api/routers/documents.py 读取文档列表。
[下游关系] 返回 ChunkMatch 列表（按相似度降序）；document_names 供来源回填。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.doc import DocumentChunkModel, DocumentModel, ScriptModel
from .errors import data_access_guard


@dataclass(frozen=True)
class ChunkMatch:
    id: str
    document_id: str
    content: str
    page_start: Optional[int]
    page_end: Optional[int]
    chunk_index: int
    similarity: float


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    [职责] 查询向量与矩阵每一行的余弦相似度（一次矩阵乘）。
    [边界] 零向量行（或查询为零向量）得分为 NaN；matrix 列数必须等于查询维度。
    """
    q = np.asarray(query, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.dot(matrix, q) / denom
    scores[denom <= 0.0] = np.nan
    return scores


class ChunkRepo:
    """Document chunk repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def vector_query(
        self,
        embedding: Sequence[float],
        *,
        limit: int,
        threshold: float,
    ) -> List[ChunkMatch]:
        """
        [职责] 返回相似度严格大于 threshold 的分块，按相似度降序，最多 limit 条。
        [边界] limit<=0 或查询向量为空返回空列表；同分保持存储顺序。
        [上游关系] semantic_search。
        [下游关系] ChunkMatch 列表。
        """
        dim = len(embedding)
        if limit <= 0 or dim == 0:
            return []

        stmt = select(DocumentChunkModel).where(DocumentChunkModel.embedding.is_not(None))
        with data_access_guard("document_chunks", op="vector_query"):
            rows = (await self._session.scalars(stmt)).all()

        candidates = [c for c in rows if isinstance(c.embedding, list) and len(c.embedding) == dim]
        if not candidates:
            return []

        matrix = np.asarray([c.embedding for c in candidates], dtype=np.float64)
        scores = cosine_scores(embedding, matrix)
        keep = np.flatnonzero(scores > threshold)  # docstring: NaN 比较为 False，零向量自然被排除
        order = keep[np.argsort(-scores[keep], kind="stable")][:limit]

        return [
            ChunkMatch(
                id=str(candidates[i].id),
                document_id=str(candidates[i].document_id),
                content=candidates[i].content,
                page_start=candidates[i].page_start,
                page_end=candidates[i].page_end,
                chunk_index=int(candidates[i].chunk_index or 0),
                similarity=float(scores[i]),
            )
            for i in order
        ]

    async def document_names(self, document_ids: Iterable[str]) -> Dict[str, str]:
        """批量解析 document_id -> filename（未命中的 id 不出现在结果中）。"""
        ids = sorted({str(i) for i in document_ids if i})
        if not ids:
            return {}
        stmt = select(DocumentModel.id, DocumentModel.filename).where(DocumentModel.id.in_(ids))
        with data_access_guard("documents", op="document_names"):
            rows = (await self._session.execute(stmt)).all()
        return {str(doc_id): filename for doc_id, filename in rows}

    async def list_documents_with_chunk_count(
        self,
        *,
        script_id: Optional[str] = None,
    ) -> List[Tuple[DocumentModel, Optional[str], int]]:
        """
        [职责] 按 created_at 倒序列出文档，附剧本名与分块数（无分块为 0）。
        [边界] script_id 非空时只返回该剧本的文档；不做分页。
        [上游关系] api/routers/documents.py。
        """
        chunk_counts = (
            select(DocumentChunkModel.document_id, func.count(DocumentChunkModel.id).label("chunk_count"))
            .group_by(DocumentChunkModel.document_id)
            .subquery()
        )
        stmt = (
            select(DocumentModel, ScriptModel.name, func.coalesce(chunk_counts.c.chunk_count, 0))
            .outerjoin(ScriptModel, ScriptModel.id == DocumentModel.script_id)
            .outerjoin(chunk_counts, chunk_counts.c.document_id == DocumentModel.id)
            .order_by(DocumentModel.created_at.desc())
        )
        if script_id:
            stmt = stmt.where(DocumentModel.script_id == script_id)
        with data_access_guard("documents", op="list"):
            rows = (await self._session.execute(stmt)).all()
        return [(doc, script_name, int(count or 0)) for doc, script_name, count in rows]

    async def add_document(self, *, filename: str, script_id: Optional[str] = None, **extra: Any) -> DocumentModel:
        doc = DocumentModel(filename=filename, script_id=script_id, **extra)
        with data_access_guard("documents", op="insert"):
            self._session.add(doc)
            await self._session.flush()
        return doc

    async def add_chunk(
        self,
        *,
        document_id: str,
        content: str,
        embedding: Optional[List[float]],
        chunk_index: int = 0,
        page_start: Optional[int] = None,
        page_end: Optional[int] = None,
    ) -> DocumentChunkModel:
        chunk = DocumentChunkModel(
            document_id=document_id,
            content=content,
            embedding=embedding,
            chunk_index=chunk_index,
            page_start=page_start,
            page_end=page_end,
        )
        with data_access_guard("document_chunks", op="insert"):
            self._session.add(chunk)
            await self._session.flush()
        return chunk
