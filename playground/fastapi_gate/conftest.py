# playground/fastapi_gate/conftest.py

"""
[职责] fastapi_gate 公共 fixture：以 create_app 构造应用，覆盖 get_session 到隔离 sqlite，并预置 PipelineDeps。
[边界] 不启动 lifespan（ASGITransport 不触发）；不访问默认本地库与外部模型。
"""

from __future__ import annotations

from typing import AsyncIterator, Callable, Optional

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from mystery_kb_rag.backend.api.deps import get_session
from mystery_kb_rag.backend.main import create_app
from mystery_kb_rag.backend.pipelines.base.context import PipelineDeps


@pytest.fixture
def build_app(session_factory) -> Callable[[Optional[PipelineDeps]], FastAPI]:
    def _build(deps: Optional[PipelineDeps] = None) -> FastAPI:
        app = create_app(pipeline_deps=deps, init_database=False)

        async def _override_session() -> AsyncIterator[AsyncSession]:
            async with session_factory() as s:
                yield s

        app.dependency_overrides[get_session] = _override_session
        return app

    return _build


@pytest.fixture
def client_for():
    def _client(app: FastAPI) -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    return _client
