# playground/sql_gate/test_engine_repo_gate.py

"""
[职责] engine/repo gate：验证 init_db 建表、会话消息仓储的顺序与来源字段、剧本文档计数与 DataAccessError 包装。
[边界] 不跑 FastAPI；每个测试独立 sqlite 文件，不污染默认本地库。
[上游关系] backend/db/{engine,models,repo}。
[下游关系] chat_service / scripts router / 检索适配器依赖这些仓储行为。
"""

from __future__ import annotations

import numpy as np
import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from mystery_kb_rag.backend.db.engine import create_engine, drop_db, init_db
from mystery_kb_rag.backend.db.models.entity import ENTITY_TABLES
from mystery_kb_rag.backend.db.repo import ChatSessionRepo, ChunkRepo, EntityRepo, ScriptRepo
from mystery_kb_rag.backend.db.repo.chunk_repo import cosine_scores
from mystery_kb_rag.backend.services.chat_service import add_message, get_session_messages
from mystery_kb_rag.backend.utils.errors import BadRequestError, DataAccessError, NotFoundError


pytestmark = pytest.mark.sql_gate


@pytest.mark.asyncio
async def test_engine_init_and_drop(tmp_path) -> None:
    """Init DB creates all tables; drop DB removes them."""
    engine: AsyncEngine = create_engine(url=f"sqlite+aiosqlite:///{tmp_path / 'engine_gate.db'}", echo=False)
    try:
        await init_db(engine=engine)
        async with engine.connect() as conn:
            rows = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))).fetchall()
            names = {r[0] for r in rows}

        assert {"scripts", "documents", "document_chunks", "chat_sessions", "chat_messages"} <= names
        assert set(ENTITY_TABLES) <= names

        await drop_db(engine=engine)
        async with engine.connect() as conn:
            rows = (await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))).fetchall()
        assert "chat_messages" not in {r[0] for r in rows}
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_chat_messages_round_trip_in_order(session) -> None:
    repo = ChatSessionRepo(session)
    chat = await repo.create_session()
    await add_message(session, session_id=chat.id, role="user", content="第一句")
    await add_message(
        session,
        session_id=chat.id,
        role="assistant",
        content="回答",
        sources=[{"document_name": "a.pdf", "page_start": 1}],
    )

    rows = await get_session_messages(session, chat.id)
    assert [(r.role, r.content) for r in rows] == [("user", "第一句"), ("assistant", "回答")]
    assert rows[0].sources is None
    assert rows[1].sources == [{"document_name": "a.pdf", "page_start": 1}]


@pytest.mark.asyncio
async def test_chat_service_validates_role_and_session(session) -> None:
    chat = await ChatSessionRepo(session).create_session()
    with pytest.raises(BadRequestError):
        await add_message(session, session_id=chat.id, role="system", content="x")
    with pytest.raises(NotFoundError):
        await get_session_messages(session, "no-such-session")


@pytest.mark.asyncio
async def test_script_document_counts(session) -> None:
    scripts = ScriptRepo(session)
    chunks = ChunkRepo(session)
    busy = await scripts.create(name="两本文档")
    await scripts.create(name="空剧本")
    await chunks.add_document(filename="a.pdf", script_id=busy.id)
    await chunks.add_document(filename="b.pdf", script_id=busy.id)
    await chunks.add_document(filename="loose.pdf")
    await session.commit()

    counts = {s.name: n for s, n in await scripts.list_with_document_count()}
    assert counts == {"两本文档": 2, "空剧本": 0}


@pytest.mark.asyncio
async def test_vector_query_skips_mismatched_dimensions(session) -> None:
    chunks = ChunkRepo(session)
    doc = await chunks.add_document(filename="v.pdf")
    good = await chunks.add_chunk(document_id=doc.id, content="good", embedding=[0.6, 0.8])
    await chunks.add_chunk(document_id=doc.id, content="3d", embedding=[1.0, 0.0, 0.0])
    await chunks.add_chunk(document_id=doc.id, content="zero", embedding=[0.0, 0.0])
    await chunks.add_chunk(document_id=doc.id, content="none", embedding=None)
    await session.commit()

    matches = await chunks.vector_query([0.6, 0.8], limit=10, threshold=0.5)
    assert [m.id for m in matches] == [good.id]
    assert matches[0].similarity == pytest.approx(1.0)
    assert await chunks.vector_query([0.6, 0.8], limit=0, threshold=0.0) == []
    assert await chunks.document_names([doc.id, "missing"]) == {doc.id: "v.pdf"}


def test_cosine_scores_single_matrix_product() -> None:
    matrix = np.array([[0.0, 1.0], [0.0, 0.0], [2.0, 0.0], [1.0, 1.0]])
    scores = cosine_scores([1.0, 0.0], matrix)
    assert scores[0] == pytest.approx(0.0)
    assert np.isnan(scores[1])  # zero row
    assert scores[2] == pytest.approx(1.0)
    assert scores[3] == pytest.approx(2 ** -0.5)
    assert np.isnan(cosine_scores([0.0, 0.0], matrix)).all()


@pytest.mark.asyncio
async def test_vector_query_orders_ties_stably_and_caps(session) -> None:
    chunks = ChunkRepo(session)
    doc = await chunks.add_document(filename="rank.pdf")
    low = await chunks.add_chunk(document_id=doc.id, content="low", embedding=[1.0, 1.0], chunk_index=0)
    tie_a = await chunks.add_chunk(document_id=doc.id, content="a", embedding=[1.0, 0.0], chunk_index=1)
    tie_b = await chunks.add_chunk(document_id=doc.id, content="b", embedding=[3.0, 0.0], chunk_index=2)
    await chunks.add_chunk(document_id=doc.id, content="edge", embedding=[0.0, 1.0], chunk_index=3)
    await session.commit()

    matches = await chunks.vector_query([1.0, 0.0], limit=10, threshold=0.5)
    assert [m.id for m in matches] == [tie_a.id, tie_b.id, low.id]
    assert [m.chunk_index for m in matches] == [1, 2, 0]

    capped = await chunks.vector_query([1.0, 0.0], limit=2, threshold=0.5)
    assert [m.id for m in capped] == [tie_a.id, tie_b.id]

    assert await chunks.vector_query([1.0, 0.0], limit=10, threshold=1.0) == []  # strictly greater


@pytest.mark.asyncio
async def test_entity_repo_rejects_unknown_table_and_column(session) -> None:
    repo = EntityRepo(session)
    with pytest.raises(ValueError):
        await repo.structured_query("users", [])
    with pytest.raises(ValueError):
        await repo.structured_query("tricks", [("password", "x")])


@pytest.mark.asyncio
async def test_storage_failure_is_data_access_error(engine, session) -> None:
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE tricks"))

    with pytest.raises(DataAccessError) as exc_info:
        await EntityRepo(session).structured_query("tricks", [("type", "alibi")])
    assert exc_info.value.http_status == 503
    assert exc_info.value.detail["table"] == "tricks"
