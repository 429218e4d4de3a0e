# playground/retrieval_gate/test_search_adapters_gate.py

"""
[职责] search adapters gate：验证结构化检索（等值过滤 + 来源回填 + 名次分）、语义检索（阈值/上限/空查询）与执行器的并发/失败语义。
[边界] 使用隔离 sqlite 与固定向量 embedding；不调用外部模型。
[上游关系] backend/pipelines/retrieval/{structured,semantic,executor}.py 与 db/repo/{entity,chunk}_repo.py。
[下游关系] fusion 与 pipeline 依赖两路结果的顺序与分数。
"""

from __future__ import annotations

import asyncio
from typing import Any, List

import pytest
from llama_index.core.base.embeddings.base import BaseEmbedding
from pydantic import PrivateAttr

from mystery_kb_rag.backend.db.repo import ChunkRepo, EntityRepo, ScriptRepo
from mystery_kb_rag.backend.pipelines.retrieval.executor import execute_search
from mystery_kb_rag.backend.pipelines.retrieval.filters import CharacterFilters, TrickFilters, UntypedFilters
from mystery_kb_rag.backend.pipelines.retrieval.intent import IntentClassification
from mystery_kb_rag.backend.pipelines.retrieval.semantic import semantic_search
from mystery_kb_rag.backend.pipelines.retrieval.structured import structured_search
from mystery_kb_rag.backend.utils.errors import UpstreamModelError


pytestmark = pytest.mark.retrieval_gate


async def _seed(session_factory) -> dict:
    """剧本 + 文档 + 两个诡计 + 一个无来源角色 + 三个分块。"""
    async with session_factory() as session:
        script = await ScriptRepo(session).create(name="雪夜山庄")
        chunks = ChunkRepo(session)
        doc = await chunks.add_document(filename="雪夜山庄.pdf", script_id=script.id)
        entities = EntityRepo(session)
        t1 = await entities.add(
            "tricks", name="冰锥密室", type="locked_room", document_id=doc.id, script_id=script.id, page_start=3, page_end=4
        )
        t2 = await entities.add("tricks", name="伪造时间", type="alibi", document_id=doc.id, script_id=script.id)
        t3 = await entities.add("tricks", name="双重密室", type="locked_room", document_id=doc.id, page_start=9)
        orphan = await entities.add("characters", name="管家", role="suspect")
        exact = await chunks.add_chunk(document_id=doc.id, content="密室由冰锥完成", embedding=[1.0, 0.0, 0.0], page_start=3)
        near = await chunks.add_chunk(document_id=doc.id, content="窗户反锁", embedding=[1.0, 1.0, 0.0], chunk_index=1)
        await chunks.add_chunk(document_id=doc.id, content="无关内容", embedding=[0.0, 1.0, 0.0], chunk_index=2)
        await session.commit()
        return {
            "script": script.id,
            "doc": doc.id,
            "t1": t1.id,
            "t2": t2.id,
            "t3": t3.id,
            "orphan": orphan.id,
            "exact": exact.id,
            "near": near.id,
        }


@pytest.mark.asyncio
async def test_structured_search_filters_and_provenance(session_factory) -> None:
    ids = await _seed(session_factory)
    items = await structured_search(TrickFilters(type="locked_room"), store=session_factory)

    assert {i.id for i in items} == {ids["t1"], ids["t3"]}
    assert [i.score for i in items] == [1.0, 0.5]  # docstring: 1 / (1 + position)
    assert all(i.entity_kind == "trick" for i in items)

    by_id = {i.id: i for i in items}
    assert by_id[ids["t1"]].provenance.document_name == "雪夜山庄.pdf"
    assert by_id[ids["t1"]].provenance.script_name == "雪夜山庄"
    assert by_id[ids["t1"]].provenance.page_start == 3
    assert by_id[ids["t3"]].provenance.script_name is None
    assert by_id[ids["t1"]].payload.to_fields()["name"] == "冰锥密室"


@pytest.mark.asyncio
async def test_structured_search_script_scope(session_factory) -> None:
    ids = await _seed(session_factory)
    items = await structured_search(TrickFilters(type="locked_room", script_id=ids["script"]), store=session_factory)
    assert [i.id for i in items] == [ids["t1"]]


@pytest.mark.asyncio
async def test_structured_search_without_document_uses_unknown(session_factory) -> None:
    ids = await _seed(session_factory)
    items = await structured_search(CharacterFilters(role="suspect"), store=session_factory)

    assert [i.id for i in items] == [ids["orphan"]]
    assert items[0].provenance.document_name == "unknown"


@pytest.mark.asyncio
async def test_structured_search_without_kind_is_empty(session_factory) -> None:
    await _seed(session_factory)
    assert await structured_search(UntypedFilters(), store=session_factory) == []
    assert await structured_search(None, store=session_factory) == []


@pytest.mark.asyncio
async def test_semantic_search_threshold_and_order(session_factory, fixed_embedding) -> None:
    ids = await _seed(session_factory)
    embedder = fixed_embedding(default=[1.0, 0.0, 0.0])
    items = await semantic_search("冰锥", embedder=embedder, store=session_factory)

    assert [i.id for i in items] == [ids["exact"], ids["near"]]  # docstring: 正交分块（相似度 0）被阈值排除
    assert items[0].score == pytest.approx(1.0)
    assert items[1].score == pytest.approx(0.7071, abs=1e-4)
    assert items[0].entity_kind == "document_chunk"
    assert items[0].provenance.document_name == "雪夜山庄.pdf"
    assert items[0].payload.to_fields() == {"content": "密室由冰锥完成", "chunk_index": 0}


@pytest.mark.asyncio
async def test_semantic_search_threshold_is_strict_and_limit_caps(session_factory, fixed_embedding) -> None:
    ids = await _seed(session_factory)
    embedder = fixed_embedding(default=[1.0, 0.0, 0.0])

    assert await semantic_search("q", embedder=embedder, store=session_factory, threshold=1.0) == []
    capped = await semantic_search("q", embedder=embedder, store=session_factory, limit=1)
    assert [i.id for i in capped] == [ids["exact"]]


@pytest.mark.asyncio
async def test_semantic_search_whitespace_skips_embedding(session_factory, fixed_embedding) -> None:
    embedder = fixed_embedding(fail=True)
    assert await semantic_search("   ", embedder=embedder, store=session_factory) == []
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_semantic_search_embedding_failure_is_upstream_error(session_factory, fixed_embedding) -> None:
    with pytest.raises(UpstreamModelError):
        await semantic_search("q", embedder=fixed_embedding(fail=True), store=session_factory)


@pytest.mark.asyncio
async def test_executor_structured_does_not_embed(session_factory, fixed_embedding) -> None:
    ids = await _seed(session_factory)
    embedder = fixed_embedding()
    classification = IntentClassification.create("structured", filters=TrickFilters(type="alibi"))
    outcome = await execute_search(classification, query="不在场证明", embedder=embedder, store=session_factory)

    assert [i.id for i in outcome.structured] == [ids["t2"]]
    assert outcome.semantic == []
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_executor_semantic_falls_back_to_query(session_factory, fixed_embedding) -> None:
    await _seed(session_factory)
    embedder = fixed_embedding()
    classification = IntentClassification.create("semantic")
    outcome = await execute_search(classification, query="原始问题", embedder=embedder, store=session_factory)

    assert embedder.calls == ["原始问题"]
    assert outcome.structured == []
    assert len(outcome.semantic) == 2


@pytest.mark.asyncio
async def test_executor_hybrid_runs_both(session_factory, fixed_embedding) -> None:
    ids = await _seed(session_factory)
    embedder = fixed_embedding()
    classification = IntentClassification.create(
        "hybrid", filters=TrickFilters(type="alibi"), semantic_query="伪造时间的手法"
    )
    outcome = await execute_search(classification, query="q", embedder=embedder, store=session_factory)

    assert [i.id for i in outcome.structured] == [ids["t2"]]
    assert [i.id for i in outcome.semantic] == [ids["exact"], ids["near"]]
    assert embedder.calls == ["伪造时间的手法"]


class _RendezvousSession:
    """会话入口：标记结构化一侧已发出，并等待语义一侧的 embedding 已发出。"""

    def __init__(self, inner, entered: asyncio.Event, embedded: asyncio.Event) -> None:
        self._inner = inner
        self._entered = entered
        self._embedded = embedded

    async def __aenter__(self):
        self._entered.set()
        await self._embedded.wait()
        return await self._inner.__aenter__()

    async def __aexit__(self, *exc_info):
        return await self._inner.__aexit__(*exc_info)


class RendezvousEmbedding(BaseEmbedding):
    """embedding 标记已发出后，等待结构化一侧进入会话才返回。"""

    _entered: asyncio.Event = PrivateAttr()
    _embedded: asyncio.Event = PrivateAttr()

    def __init__(self, entered: asyncio.Event, embedded: asyncio.Event, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._entered = entered
        self._embedded = embedded

    async def _aget_query_embedding(self, query: str) -> List[float]:
        self._embedded.set()
        await self._entered.wait()
        return [1.0, 0.0, 0.0]

    def _get_query_embedding(self, query: str) -> List[float]:
        return [1.0, 0.0, 0.0]

    def _get_text_embedding(self, text: str) -> List[float]:
        return [1.0, 0.0, 0.0]


@pytest.mark.asyncio
async def test_executor_hybrid_issues_both_searches_before_either_resolves(session_factory) -> None:
    ids = await _seed(session_factory)
    entered = asyncio.Event()
    embedded = asyncio.Event()

    def store():
        return _RendezvousSession(session_factory(), entered, embedded)

    classification = IntentClassification.create("hybrid", filters=TrickFilters(type="alibi"), semantic_query="x")
    # each side blocks until the other has started; sequential execution would never finish
    outcome = await asyncio.wait_for(
        execute_search(
            classification,
            query="q",
            embedder=RendezvousEmbedding(entered, embedded),
            store=store,
        ),
        timeout=3.0,
    )

    assert [i.id for i in outcome.structured] == [ids["t2"]]
    assert [i.id for i in outcome.semantic][0] == ids["exact"]


@pytest.mark.asyncio
async def test_executor_hybrid_semantic_failure_rejects_whole_search(session_factory, fixed_embedding) -> None:
    await _seed(session_factory)
    classification = IntentClassification.create("hybrid", filters=TrickFilters(type="alibi"), semantic_query="x")

    with pytest.raises(UpstreamModelError):
        await execute_search(
            classification,
            query="q",
            embedder=fixed_embedding(fail=True),
            store=session_factory,
        )
