# src/mystery_kb_rag/backend/db/engine.py

"""
[职责] 数据库引擎与会话工厂：创建 AsyncEngine / async_sessionmaker，并提供 FastAPI 可注入的 get_session。
[边界] 不包含 ORM Model 定义；不包含业务事务编排（由 service/repo 负责）；不负责迁移。
[上游关系] config.py 提供 MYSTERY_KB_RAG_DATABASE_URL；应用启动时调用 init_db。
[下游关系] api/deps.py、repo 层依赖 AsyncSession；检索并发分支通过 sessionmaker 各自开会话。
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .base import Base


def _settings_db_url() -> str | None:
    from mystery_kb_rag.config import settings as _settings

    v = str(getattr(_settings, "MYSTERY_KB_RAG_DATABASE_URL", "") or "").strip()
    return v or None


def resolve_db_url(override: str | None = None) -> str:
    """
    Resolve database URL.

    Priority:
        1) explicit override
        2) settings: MYSTERY_KB_RAG_DATABASE_URL (loads .env, defaults to repo-root/.Local sqlite)
        3) env: DATABASE_URL
    """
    if override:
        return override
    s_url = _settings_db_url()
    if s_url:
        return s_url
    return os.getenv("DATABASE_URL", "").strip()


def _ensure_sqlite_dir(url: str) -> None:
    """sqlite 文件库：确保父目录存在（内存库跳过）。"""
    prefix = "sqlite+aiosqlite:///"
    if not url.startswith(prefix):
        return
    raw = url[len(prefix) :]
    if not raw or raw.startswith(":memory:"):
        return
    Path(raw).parent.mkdir(parents=True, exist_ok=True)


def create_engine(*, url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create AsyncEngine (aiosqlite by default)."""  # docstring: 生产/测试复用；测试传入临时 sqlite 文件
    db_url = resolve_db_url(url)
    if not db_url:
        raise RuntimeError("database url is not configured")
    _ensure_sqlite_dir(db_url)
    db_echo = echo if echo is not None else (os.getenv("SQL_ECHO", "0") == "1")  # docstring: SQL 打印开关

    return create_async_engine(
        db_url,
        echo=db_echo,
        pool_pre_ping=True,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async sessionmaker."""  # docstring: 统一 expire_on_commit 行为，避免 service 层踩坑
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


# --- global singletons (app runtime) ---
ENGINE: AsyncEngine = create_engine()  # docstring: 默认全局引擎
SessionLocal: async_sessionmaker[AsyncSession] = create_sessionmaker(ENGINE)  # docstring: 默认会话工厂


async def init_db(*, engine: AsyncEngine | None = None) -> None:
    """
    Initialize database schema (create_all).

    Must import models to register tables in Base.metadata.
    """  # docstring: 供 main.py startup 与测试 fixture 使用
    from . import models  # noqa: F401  # docstring: 强制注册 ORM 表

    eng = engine or ENGINE
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(*, engine: AsyncEngine | None = None) -> None:
    """Drop all tables (local/dev/tests only)."""
    from . import models  # noqa: F401

    eng = engine or ENGINE
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    """
    FastAPI dependency.

    Example:
      async def endpoint(session: AsyncSession = Depends(get_session)): ...
    """
    async with SessionLocal() as session:
        yield session
