# src/mystery_kb_rag/backend/main.py

"""
[职责] 应用入口：create_app 装配 middleware、routers、日志与数据库初始化。
[边界] 不构造模型客户端（由 deps.get_pipeline_deps 首次请求时按 Settings 构造）；测试可预置 app.state.pipeline_deps。
[上游关系] uvicorn mystery_kb_rag.backend.main:app。
[下游关系] api/routers/*。
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from mystery_kb_rag.backend.api.middleware import TraceContextMiddleware
from mystery_kb_rag.backend.api.routers import chat, documents, health, query, scripts, search
from mystery_kb_rag.backend.db.engine import init_db
from mystery_kb_rag.backend.pipelines.base.context import PipelineDeps
from mystery_kb_rag.backend.utils.logging_ import configure_logging, get_logger, log_event
from mystery_kb_rag.config import settings

logger = get_logger("main")


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "init_db", True):
        await init_db()  # docstring: create_all（幂等）
    log_event(logger, logging.INFO, "app.startup", fields={"debug": settings.DEBUG})
    yield
    log_event(logger, logging.INFO, "app.shutdown")


def create_app(*, pipeline_deps: Optional[PipelineDeps] = None, init_database: bool = True) -> FastAPI:
    """
    [职责] 构造 FastAPI 应用。
    [边界] pipeline_deps 传入时直接挂到 app.state（跳过按 Settings 构造）；init_database=False 时启动不建表。
    """
    configure_logging(level=logging.getLevelName(str(settings.LOG_LEVEL).upper()))

    app = FastAPI(title="mystery_kb_rag", version="0.1.0", lifespan=_lifespan)
    app.state.init_db = init_database
    if pipeline_deps is not None:
        app.state.pipeline_deps = pipeline_deps

    app.add_middleware(TraceContextMiddleware)
    for module in (health, chat, search, query, scripts, documents):
        app.include_router(module.router)
    return app


app = create_app()
