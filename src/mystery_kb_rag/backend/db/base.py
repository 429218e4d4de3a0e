# src/mystery_kb_rag/backend/db/base.py

"""
[职责] ORM 基类与通用字段 mixin（DeclarativeBase + created_at）。
[边界] 不定义业务表；不创建引擎。
[上游关系] 无。
[下游关系] db/models/* 继承 Base / TimestampMixin；engine.init_db 读取 Base.metadata。
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TimestampMixin:
    """created_at 通用字段（UTC）。"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
        comment="创建时间（UTC）",  # docstring: 列表排序与历史回放依据
    )
