# src/mystery_kb_rag/backend/db/repo/errors.py

"""
[职责] 仓储层异常边界：将 SQLAlchemyError 包装为 DataAccessError（保留表名与异常类型，不暴露 SQL 原文）。
[边界] 只包装 SQLAlchemyError；DomainError 与其他异常原样传播。
[上游关系] 各 repo 的读写方法以 with data_access_guard(...) 包裹 I/O。
[下游关系] 检索/会话链路捕获 DataAccessError（HTTP 503）。
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError

from mystery_kb_rag.backend.utils.errors import DataAccessError


@contextmanager
def data_access_guard(table: str, *, op: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise DataAccessError(
            message=f"{op} on {table} failed",
            detail={"table": table, "op": op, "error_type": type(exc).__name__},
            cause=exc,
        ) from exc
