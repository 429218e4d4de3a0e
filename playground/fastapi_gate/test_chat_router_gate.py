# playground/fastapi_gate/test_chat_router_gate.py

"""
[职责] chat router gate：验证 POST /chat 的 SSE 事件顺序、失败时的 error 事件、会话消息持久化与前置校验错误。
[边界] 使用脚本化 LLM 与隔离 sqlite；通过 httpx ASGITransport 读取完整响应体后解析。
[上游关系] backend/api/routers/chat.py → services/chat_service.py。
[下游关系] 前端按 parse_sse_buffer 的事件序列渲染。
"""

from __future__ import annotations

import pytest

from mystery_kb_rag.backend.db.repo import ChunkRepo
from mystery_kb_rag.backend.schemas.ids import new_uuid
from mystery_kb_rag.backend.utils.sse import parse_sse_buffer


pytestmark = pytest.mark.fastapi_gate


async def _seed_chunk(session_factory) -> None:
    async with session_factory() as session:
        repo = ChunkRepo(session)
        doc = await repo.add_document(filename="迷雾庄园.pdf")
        await repo.add_chunk(document_id=doc.id, content="管家在午夜离开了房间", embedding=[1.0, 0.0, 0.0], page_start=12)
        await session.commit()


@pytest.mark.asyncio
async def test_chat_stream_event_order_and_persistence(
    build_app, client_for, make_deps, intent_json, session_factory
) -> None:
    await _seed_chunk(session_factory)
    deps = make_deps(intent=intent_json("semantic"), chat_chunks=["管家", "是", "凶手"])
    app = build_app(deps)
    trace_id = str(new_uuid())

    async with client_for(app) as client:
        resp = await client.post("/chat", json={"message": "谁是凶手？"}, headers={"x-trace-id": trace_id})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["x-trace-id"] == trace_id

        events, done, remaining = parse_sse_buffer(resp.text)
        assert done is True
        assert remaining == ""
        assert [e["type"] for e in events] == ["session_id", "chunk", "chunk", "chunk", "sources"]
        assert "".join(e["content"] for e in events if e["type"] == "chunk") == "管家是凶手"
        assert events[-1]["sources"] == [{"document_name": "迷雾庄园.pdf", "page_start": 12}]
        assert resp.text.endswith("data: [DONE]\n\n")

        session_id = events[0]["session_id"]
        history = await client.get(f"/chat/sessions/{session_id}/messages")
        assert history.status_code == 200
        messages = history.json()["messages"]
        assert [(m["role"], m["content"]) for m in messages] == [("user", "谁是凶手？"), ("assistant", "管家是凶手")]
        assert messages[1]["sources"] == [{"document_name": "迷雾庄园.pdf", "page_start": 12, "page_end": None}]


@pytest.mark.asyncio
async def test_chat_reuses_session_and_feeds_history(build_app, client_for, make_deps, intent_json, session_factory) -> None:
    await _seed_chunk(session_factory)
    deps = make_deps(intent=intent_json("semantic"), chat_chunks=["好"])
    app = build_app(deps)

    async with client_for(app) as client:
        first = await client.post("/chat", json={"message": "第一问"})
        session_id = parse_sse_buffer(first.text)[0][0]["session_id"]

        second = await client.post("/chat", json={"message": "第二问", "session_id": session_id})
        events, done, _ = parse_sse_buffer(second.text)
        assert done is True
        assert events[0]["session_id"] == session_id

        prompt = deps.chat_llm.prompts[-1]
        assert "第一问" in prompt
        assert prompt.count("第二问") == 1  # docstring: 当前问题只出现一次

        history = (await client.get(f"/chat/sessions/{session_id}/messages")).json()["messages"]
        assert [m["content"] for m in history] == ["第一问", "好", "第二问", "好"]


@pytest.mark.asyncio
async def test_chat_empty_results_streams_fallback(build_app, client_for, make_deps, intent_json) -> None:
    deps = make_deps(intent=intent_json("structured", {"era": "唐朝"}), chat_chunks=["never"])
    app = build_app(deps)

    async with client_for(app) as client:
        resp = await client.post("/chat", json={"message": "唐朝背景的本"})
        events, done, _ = parse_sse_buffer(resp.text)

    assert done is True
    assert [e["type"] for e in events] == ["session_id", "chunk", "sources"]
    assert events[1]["content"].startswith("抱歉，当前知识库中没有找到与您问题相关的信息。")
    assert events[2]["sources"] == []
    assert deps.chat_llm.prompts == []


@pytest.mark.asyncio
async def test_chat_stream_failure_emits_error_then_done(
    build_app, client_for, make_deps, intent_json, session_factory
) -> None:
    await _seed_chunk(session_factory)
    deps = make_deps(intent=intent_json("semantic"), chat_chunks=["半", "句"], fail_after=1, error_message="连接中断")
    app = build_app(deps)

    async with client_for(app) as client:
        resp = await client.post("/chat", json={"message": "问题"})
        events, done, _ = parse_sse_buffer(resp.text)
        assert done is True
        assert [e["type"] for e in events] == ["session_id", "chunk", "error"]
        assert events[-1]["error"] == "连接中断"

        session_id = events[0]["session_id"]
        history = (await client.get(f"/chat/sessions/{session_id}/messages")).json()["messages"]
        assert [m["role"] for m in history] == ["user"]  # docstring: 失败时不写 assistant 消息


@pytest.mark.asyncio
async def test_chat_blank_message_is_bad_request(build_app, client_for, make_deps, intent_json) -> None:
    app = build_app(make_deps(intent=intent_json("semantic")))

    async with client_for(app) as client:
        resp = await client.post("/chat", json={"message": "   "})

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"]["code"] == "bad_request"
    assert body["error"]["message"] == "消息内容不能为空"
    assert body["error"]["trace_id"] == resp.headers["x-trace-id"]


@pytest.mark.asyncio
async def test_chat_unknown_session_is_not_found(build_app, client_for, make_deps, intent_json) -> None:
    app = build_app(make_deps(intent=intent_json("semantic")))

    async with client_for(app) as client:
        resp = await client.post("/chat", json={"message": "hi", "session_id": str(new_uuid())})
        listing = await client.get(f"/chat/sessions/{new_uuid()}/messages")

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"
    assert listing.status_code == 404


@pytest.mark.asyncio
async def test_chat_classifier_failure_is_http_error(build_app, client_for, make_deps) -> None:
    app = build_app(make_deps(intent="not json at all"))

    async with client_for(app) as client:
        resp = await client.post("/chat", json={"message": "问题"})

    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "schema_mismatch"
