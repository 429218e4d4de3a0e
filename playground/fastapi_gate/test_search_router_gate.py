# playground/fastapi_gate/test_search_router_gate.py

"""
[职责] search router gate：验证 POST /search 的过滤映射、语义/结构化/混合分支、空结果提示与参数校验。
[边界] 不经过意图分类；使用固定向量 embedding。
[上游关系] backend/api/routers/search.py → services/search_service.py。
"""

from __future__ import annotations

import pytest

from mystery_kb_rag.backend.db.repo import ChunkRepo, EntityRepo
from mystery_kb_rag.backend.services.search_service import (
    MISSING_QUERY_MESSAGE,
    NO_MATCH_MESSAGE,
    map_search_filters,
)


pytestmark = pytest.mark.fastapi_gate


async def _seed(session_factory) -> dict:
    async with session_factory() as session:
        chunks = ChunkRepo(session)
        doc = await chunks.add_document(filename="古宅.pdf")
        trick = await EntityRepo(session).add("tricks", name="毒茶", type="poisoning", document_id=doc.id, page_start=2)
        chunk = await chunks.add_chunk(document_id=doc.id, content="茶杯边缘有异样", embedding=[1.0, 0.0, 0.0])
        await session.commit()
        return {"trick": trick.id, "chunk": chunk.id}


def test_map_search_filters_first_filter_wins_kind() -> None:
    mapped = map_search_filters({"trick_type": "alibi", "clue_type": "testimony", "player_count": 6})
    assert mapped == {"entity_type": "trick", "type": "alibi", "min_players": 6, "max_players": 6}

    assert map_search_filters({"narrative_structure_type": "flashback", "script_id": "s1"}) == {
        "script_id": "s1",
        "entity_type": "narrative_technique",
        "structure_type": "flashback",
    }


@pytest.mark.asyncio
async def test_search_structured_filters(build_app, client_for, make_deps, intent_json, session_factory) -> None:
    ids = await _seed(session_factory)
    app = build_app(make_deps(intent=intent_json("semantic")))

    async with client_for(app) as client:
        resp = await client.post("/search", json={"filters": {"trick_type": "poisoning"}})

    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    item = body["items"][0]
    assert item["id"] == ids["trick"]
    assert item["type"] == "trick"
    assert item["data"]["name"] == "毒茶"
    assert item["source"]["document_name"] == "古宅.pdf"
    assert item["score"] == 1.0
    assert body.get("message") is None


@pytest.mark.asyncio
async def test_search_hybrid_is_fused(build_app, client_for, make_deps, intent_json, session_factory, fixed_embedding) -> None:
    ids = await _seed(session_factory)
    embedder = fixed_embedding()
    app = build_app(make_deps(intent=intent_json("semantic"), embedder=embedder))

    async with client_for(app) as client:
        resp = await client.post("/search", json={"query": "茶里有毒", "filters": {"trick_type": "poisoning"}})

    body = resp.json()
    assert [i["id"] for i in body["items"]] == [ids["trick"], ids["chunk"]]
    assert body["items"][0]["score"] == pytest.approx(1 / 61)
    assert embedder.calls == ["茶里有毒"]
    assert app.state.pipeline_deps.intent_llm.prompts == []  # docstring: /search 不经过意图分类


@pytest.mark.asyncio
async def test_search_empty_result_has_message(build_app, client_for, make_deps, intent_json, session_factory) -> None:
    await _seed(session_factory)
    app = build_app(make_deps(intent=intent_json("semantic")))

    async with client_for(app) as client:
        resp = await client.post("/search", json={"filters": {"trick_type": "disguise"}})

    assert resp.status_code == 200
    assert resp.json() == {"items": [], "total": 0, "message": NO_MATCH_MESSAGE}


@pytest.mark.asyncio
async def test_search_requires_query_or_filters(build_app, client_for, make_deps, intent_json) -> None:
    app = build_app(make_deps(intent=intent_json("semantic")))

    async with client_for(app) as client:
        empty = await client.post("/search", json={})
        blank = await client.post("/search", json={"query": "  ", "filters": {}})
        bad_enum = await client.post("/search", json={"filters": {"trick_type": "teleport"}})

    assert empty.status_code == 400
    assert empty.json()["error"]["message"] == MISSING_QUERY_MESSAGE
    assert blank.status_code == 400
    assert bad_enum.status_code == 400
    assert bad_enum.json()["error"]["code"] == "bad_request"
