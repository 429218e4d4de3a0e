# src/mystery_kb_rag/backend/db/repo/entity_repo.py

"""
[职责] EntityRepo：结构化实体表的等值过滤查询（join documents/scripts 回填来源）。
[边界] 只读；表名必须来自 ENTITY_TABLES；列名必须存在于目标表；不排序（保持存储返回顺序）。
[上游关系] pipelines/retrieval/structured.py 传入表名与有序条件列表。
[下游关系] 返回 EntityRow，由结构化检索适配器转换为 RankedItem。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.doc import DocumentModel, ScriptModel
from ..models.entity import ENTITY_TABLES
from .errors import data_access_guard


@dataclass(frozen=True)
class EntityRow:
    """结构化实体行 + join 得到的来源字段。"""

    id: str
    fields: Dict[str, Any]
    document_name: Optional[str]
    script_name: Optional[str]
    page_start: Optional[int]
    page_end: Optional[int]


def row_to_fields(obj: Any) -> Dict[str, Any]:
    """ORM 对象 -> 列字段 dict（JSON 友好：datetime 转 ISO 字符串）。"""
    out: Dict[str, Any] = {}
    for col in obj.__table__.columns:
        value = getattr(obj, col.key)
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        out[col.key] = value
    return out


class EntityRepo:
    """Structured entity repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession):
        self._session = session  # docstring: DB 会话（每个检索分支独立）

    async def structured_query(
        self,
        table: str,
        conditions: Sequence[Tuple[str, Any]],
    ) -> List[EntityRow]:
        """
        [职责] 按条件做等值过滤（条件按传入顺序追加，script_id 由调用方排在首位）。
        [边界] 未知表或未知列抛 ValueError（调用方保证合法）；None 值条件跳过。
        [上游关系] structured_search。
        [下游关系] EntityRow 列表。
        """
        model = ENTITY_TABLES.get(table)
        if model is None:
            raise ValueError(f"unknown entity table: {table}")

        stmt = (
            select(model, DocumentModel.filename, ScriptModel.name)
            .outerjoin(DocumentModel, DocumentModel.id == model.document_id)
            .outerjoin(ScriptModel, ScriptModel.id == model.script_id)
        )
        for column, value in conditions:
            if value is None:
                continue
            attr = getattr(model, column, None)
            if attr is None or column not in model.__table__.columns:
                raise ValueError(f"unknown column {column!r} for table {table}")
            stmt = stmt.where(attr == value)  # docstring: 等值过滤

        with data_access_guard(table, op="structured_query"):
            result = await self._session.execute(stmt)
            rows = result.all()

        out: List[EntityRow] = []
        for entity, filename, script_name in rows:
            out.append(
                EntityRow(
                    id=str(entity.id),
                    fields=row_to_fields(entity),
                    document_name=filename,
                    script_name=script_name,
                    page_start=entity.page_start,
                    page_end=entity.page_end,
                )
            )
        return out

    async def add(self, table: str, **values: Any) -> Any:
        """写入一条实体行（入库流程/测试数据使用）。"""
        model = ENTITY_TABLES.get(table)
        if model is None:
            raise ValueError(f"unknown entity table: {table}")
        obj = model(**values)
        with data_access_guard(table, op="insert"):
            self._session.add(obj)
            await self._session.flush()
        return obj
