# playground/fastapi_gate/test_scripts_router_gate.py

"""
[职责] scripts/health router gate：验证剧本创建/列表/详情与健康检查输出。
[边界] 仅 DB 读写；不涉及模型。
"""

from __future__ import annotations

import pytest

from mystery_kb_rag.backend.db.repo import ChunkRepo
from mystery_kb_rag.backend.schemas.ids import new_uuid


pytestmark = pytest.mark.fastapi_gate


@pytest.mark.asyncio
async def test_scripts_create_list_and_detail(build_app, client_for, session_factory) -> None:
    app = build_app()

    async with client_for(app) as client:
        created = await client.post("/scripts", json={"name": "  雾都疑案 ", "description": "维多利亚时代"})
        assert created.status_code == 201
        script = created.json()
        assert script["name"] == "雾都疑案"

        async with session_factory() as session:
            await ChunkRepo(session).add_document(filename="雾都疑案-主持人手册.pdf", script_id=script["id"])
            await session.commit()

        listing = await client.get("/scripts")
        assert listing.status_code == 200
        body = listing.json()
        assert body["total"] == 1
        assert body["items"][0]["id"] == script["id"]
        assert body["items"][0]["document_count"] == 1

        detail = await client.get(f"/scripts/{script['id']}")
        assert detail.status_code == 200
        assert [d["filename"] for d in detail.json()["documents"]] == ["雾都疑案-主持人手册.pdf"]


@pytest.mark.asyncio
async def test_scripts_blank_name_and_missing(build_app, client_for) -> None:
    app = build_app()

    async with client_for(app) as client:
        blank = await client.post("/scripts", json={"name": "   "})
        missing = await client.get(f"/scripts/{new_uuid()}")

    assert blank.status_code == 400
    assert blank.json()["error"]["message"] == "剧本名称不能为空"
    assert missing.status_code == 404
    assert missing.json()["error"]["message"] == "剧本不存在"


@pytest.mark.asyncio
async def test_health_reports_db_ok(build_app, client_for) -> None:
    app = build_app()
    request_id = str(new_uuid())

    async with client_for(app) as client:
        resp = await client.get("/health", headers={"x-request-id": request_id})

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "db": {"ok": True}, "version": {"api": "v1"}}
    assert resp.headers["x-request-id"] == request_id
    assert resp.headers.get("x-trace-id")
