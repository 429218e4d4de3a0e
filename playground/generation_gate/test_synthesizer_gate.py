# playground/generation_gate/test_synthesizer_gate.py

"""
[职责] generation gate：验证阻塞/流式回答合成、上下文与引用构建、流式失败的终止性错误项。
[边界] 使用脚本化 LLM；不依赖外部模型；不评估回答质量。
[上游关系] backend/pipelines/generation/{prompt,synthesizer}.py。
[下游关系] chat_service SSE 输出与 /query 响应依赖此行为。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from llama_index.core.llms import (
    ChatMessage,
    ChatResponse,
    ChatResponseAsyncGen,
    CompletionResponse,
    CompletionResponseGen,
    CustomLLM,
    LLMMetadata,
)

from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.generation.prompt import (
    NO_RESULTS_MESSAGE,
    build_context,
    build_messages,
    extract_citations,
)
from mystery_kb_rag.backend.pipelines.generation.synthesizer import (
    StreamError,
    stream_answer,
    synthesize_answer,
)
from mystery_kb_rag.backend.pipelines.retrieval.payloads import ChunkPayload, TrickPayload
from mystery_kb_rag.backend.pipelines.retrieval.types import Citation, Provenance, RankedItem


pytestmark = pytest.mark.generation_gate


def _fused():
    return [
        RankedItem(
            id="t1",
            entity_kind="trick",
            payload=TrickPayload(name="冰锥密室", type="locked_room"),
            provenance=Provenance(document_name="雪夜.pdf", script_name="雪夜", page_start=3, page_end=5),
            score=0.03,
        ),
        RankedItem(
            id="c1",
            entity_kind="document_chunk",
            payload=ChunkPayload(content="门窗均从内侧反锁。", chunk_index=2),
            provenance=Provenance(document_name="雪夜.pdf", page_start=3, page_end=5),
            score=0.02,
        ),
        RankedItem(
            id="c2",
            entity_kind="document_chunk",
            payload=ChunkPayload(content="管家的证词"),
            provenance=Provenance(document_name="unknown"),
            score=0.01,
        ),
    ]


def test_build_context_headers_and_json() -> None:
    context = build_context(_fused())
    blocks = context.split("\n\n")

    assert blocks[0].startswith("[1] 来源: 雪夜.pdf (页码 3-5)\n")
    assert "冰锥密室" in blocks[0]  # docstring: 非 ASCII 原样保留
    assert json.loads(blocks[0].split("\n", 1)[1])["type"] == "locked_room"
    assert blocks[2].startswith("[3] 来源: unknown\n")
    assert build_context([]) == ""


def test_extract_citations_dedups_in_order() -> None:
    citations = extract_citations(_fused())
    assert citations == [
        Citation(document_name="雪夜.pdf", page_start=3, page_end=5),
        Citation(document_name="unknown"),
    ]
    assert citations[1].to_wire() == {"document_name": "unknown"}


def test_build_messages_orders_system_history_user() -> None:
    history = [{"role": "user", "content": "之前的问题"}, {"role": "assistant", "content": "之前的回答"}]
    messages = build_messages("现在的问题", "CTX", history=history)

    assert [m.role.value for m in messages] == ["system", "user", "assistant", "user"]
    assert "CTX" in str(messages[0].content)
    assert messages[-1].content == "现在的问题"


@pytest.mark.asyncio
async def test_synthesize_answer_blocking(scripted_llm) -> None:
    llm = scripted_llm(response_text="冰锥融化后消失 [来源: 雪夜, 3-5]")
    result = await synthesize_answer("密室怎么做到的？", _fused(), llm=llm)

    assert result.answer == "冰锥融化后消失 [来源: 雪夜, 3-5]"
    assert result.citations == extract_citations(_fused())
    assert "密室怎么做到的？" in llm.prompts[0]


@pytest.mark.asyncio
async def test_synthesize_answer_empty_short_circuit(scripted_llm) -> None:
    llm = scripted_llm(response_text="should not be used")
    result = await synthesize_answer("任何问题", [], llm=llm)

    assert result.answer == NO_RESULTS_MESSAGE
    assert result.citations == []
    assert llm.prompts == []  # docstring: 不调用模型


@pytest.mark.asyncio
async def test_stream_answer_drains_fragments(scripted_llm) -> None:
    llm = scripted_llm(chunks=["A", "B", "C"])
    stream = stream_answer("q", _fused(), llm=llm)

    assert stream.citations == extract_citations(_fused())  # docstring: 迭代前即可读取
    assert llm.prompts == []  # docstring: 模型在首次迭代时才调用
    assert await stream.drain() == "ABC"
    assert stream.error is None


@pytest.mark.asyncio
async def test_stream_chunks_consumed_once(scripted_llm) -> None:
    stream = stream_answer("q", _fused(), llm=scripted_llm(chunks=["x"]))
    items = [item async for item in stream.chunks]
    assert items == ["x"]
    with pytest.raises(RuntimeError):
        _ = stream.chunks


@pytest.mark.asyncio
async def test_stream_answer_empty_yields_single_message(scripted_llm) -> None:
    llm = scripted_llm(chunks=["never"])
    stream = stream_answer("q", [], llm=llm)

    assert stream.citations == []
    items = [item async for item in stream.chunks]
    assert items == [NO_RESULTS_MESSAGE]
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_stream_failure_becomes_terminal_error_item(scripted_llm) -> None:
    llm = scripted_llm(chunks=["A", "B", "C"], fail_after=2, error_message="upstream reset")
    stream = stream_answer("q", _fused(), llm=llm)

    items = [item async for item in stream.chunks]
    assert items[:2] == ["A", "B"]
    assert isinstance(items[-1], StreamError)
    assert items[-1].message == "upstream reset"
    assert stream.error == items[-1]


@pytest.mark.asyncio
async def test_stream_cancelled_deadline_stops_before_model(scripted_llm) -> None:
    deadline = RunDeadline.unbounded()
    deadline.cancel("client_disconnected")
    stream = stream_answer("q", _fused(), llm=scripted_llm(chunks=["A"]), deadline=deadline)

    items = [item async for item in stream.chunks]
    assert len(items) == 1
    assert isinstance(items[0], StreamError)


class StallingLLM(CustomLLM):
    """流式产出一个分片后长时间挂起的模型（模拟上游停滞）。"""

    @property
    def metadata(self) -> LLMMetadata:
        return LLMMetadata(model_name="stalling", is_chat_model=True)

    def complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponse:
        return CompletionResponse(text="")

    def stream_complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponseGen:
        yield CompletionResponse(text="", delta="")

    async def astream_chat(self, messages: Any, **kwargs: Any) -> ChatResponseAsyncGen:
        async def _gen() -> ChatResponseAsyncGen:
            yield ChatResponse(message=ChatMessage(role="assistant", content="A"), delta="A")
            await asyncio.sleep(3600)
            yield ChatResponse(message=ChatMessage(role="assistant", content="AB"), delta="B")

        return _gen()


@pytest.mark.asyncio
async def test_stream_deadline_bounds_stalled_model() -> None:
    stream = stream_answer("q", _fused(), llm=StallingLLM(), deadline=RunDeadline(timeout_s=0.2))

    async def _collect():
        return [item async for item in stream.chunks]

    items = await asyncio.wait_for(_collect(), timeout=3.0)
    assert items[0] == "A"
    assert isinstance(items[-1], StreamError)
    assert items[-1].error_type == "DeadlineExceededError"
    assert stream.error == items[-1]
