# src/mystery_kb_rag/backend/pipelines/generation/synthesizer.py

"""
[职责] 回答合成：基于融合结果构建上下文、调用 chat 模型生成带引用的回答；提供阻塞（synthesize_answer）与流式（stream_answer）两个入口。
[边界] 不做检索与融合；空结果不调用模型（固定回复 + 空引用）；流式失败在生产者内部转换为终止性 StreamError，不向消费者抛出。
[上游关系] run_retrieval_pipeline（阻塞）；chat_service.stream_chat（流式）。
[下游关系] SynthesisResult / AnswerStream；SSE 边界把 chunks/citations/error 编码为事件。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Optional, Sequence, Union

from llama_index.core.llms import LLM

from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.pipelines.generation.generator import chat_once, stream_chat_deltas
from mystery_kb_rag.backend.pipelines.generation.prompt import (
    NO_RESULTS_MESSAGE,
    build_context,
    build_messages,
    extract_citations,
)
from mystery_kb_rag.backend.pipelines.retrieval.types import Citation, RankedItem
from mystery_kb_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("generation.synthesizer")


@dataclass(frozen=True)
class SynthesisResult:
    """阻塞合成结果：完整回答 + 去重引用。"""

    answer: str
    citations: List[Citation] = field(default_factory=list)


@dataclass(frozen=True)
class StreamError:
    """流式合成的终止性错误项（携带错误消息与类型）。"""

    message: str
    error_type: str = "Exception"


StreamItem = Union[str, StreamError]


class AnswerStream:
    """
    [职责] 流式合成结果：citations 在创建时即可读取；chunks 为单次消费的异步迭代器（文本分片，失败时以 StreamError 结尾）。
    [边界] chunks 只能迭代一次（重复访问抛 RuntimeError）；error 在耗尽后可读。
    [上游关系] stream_answer 构造。
    [下游关系] chat_service.stream_chat 逐项编码为 SSE 事件。
    """

    def __init__(self, producer: AsyncIterator[StreamItem], citations: Sequence[Citation]) -> None:
        self._producer = producer
        self._consumed = False
        self.citations: List[Citation] = list(citations)
        self.error: Optional[StreamError] = None

    @property
    def chunks(self) -> AsyncIterator[StreamItem]:
        if self._consumed:
            raise RuntimeError("answer stream can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamItem]:
        try:
            async for item in self._producer:
                if isinstance(item, StreamError):
                    self.error = item
                    yield item
                    return
                yield item
        finally:
            await self.aclose()

    async def drain(self) -> str:
        """消费全部分片并拼接文本（遇到 StreamError 即停止，已产出文本保留）。"""
        parts: List[str] = []
        async for item in self.chunks:
            if isinstance(item, StreamError):
                break
            parts.append(item)
        return "".join(parts)

    async def aclose(self) -> None:
        """关闭底层生产者（客户端断开时调用）。"""
        aclose = getattr(self._producer, "aclose", None)
        if aclose is not None:
            await aclose()


async def _single_message(text: str) -> AsyncIterator[StreamItem]:
    yield text


async def _produce(
    llm: LLM,
    messages: Sequence[Any],
    *,
    deadline: RunDeadline,
) -> AsyncIterator[StreamItem]:
    """
    [职责] 流生产者：逐个产出模型增量；等待下一个分片的 await 以剩余时间为上限（停滞的模型流同样受截止时间约束）。
    [边界] 任何异常（模型错误、截止时间、取消标记）均转换为终止性 StreamError；不重新抛出。
    """
    deltas = stream_chat_deltas(llm, messages)
    emitted = 0
    try:
        while True:
            try:
                delta = await deadline.run(deltas.__anext__(), stage="generate")
            except StopAsyncIteration:
                break
            emitted += 1
            yield delta
    except Exception as exc:
        log_event(
            logger,
            logging.WARNING,
            "synthesis.stream_failed",
            fields={"error_type": type(exc).__name__, "chunks_emitted": emitted},
        )
        yield StreamError(message=str(exc) or type(exc).__name__, error_type=type(exc).__name__)
    finally:
        await deltas.aclose()


async def synthesize_answer(
    query: str,
    fused: Sequence[RankedItem],
    *,
    llm: LLM,
    history: Optional[Sequence[Any]] = None,
    deadline: Optional[RunDeadline] = None,
) -> SynthesisResult:
    """
    [职责] 阻塞合成：一次 chat 调用返回完整回答。
    [边界] fused 为空时不调用模型；模型失败以 UpstreamModelError 抛出。
    [上游关系] run_retrieval_pipeline.generate 阶段。
    [下游关系] SynthesisResult(answer, citations)。
    """
    if not fused:
        return SynthesisResult(answer=NO_RESULTS_MESSAGE, citations=[])

    citations = extract_citations(fused)
    messages = build_messages(query, build_context(fused), history=history)
    answer = await chat_once(llm, messages, deadline=deadline)

    log_event(
        logger,
        logging.INFO,
        "synthesis.done",
        fields={"contexts": len(fused), "citations": len(citations), "answer_len": len(answer)},
    )
    return SynthesisResult(answer=answer, citations=citations)


def stream_answer(
    query: str,
    fused: Sequence[RankedItem],
    *,
    llm: LLM,
    history: Optional[Sequence[Any]] = None,
    deadline: Optional[RunDeadline] = None,
) -> AnswerStream:
    """
    [职责] 流式合成：立即返回 AnswerStream（引用已计算），模型在首次迭代 chunks 时才被调用。
    [边界] fused 为空时只产出固定回复一个分片，引用为空。
    [上游关系] chat_service.stream_chat。
    [下游关系] AnswerStream。
    """
    if not fused:
        return AnswerStream(_single_message(NO_RESULTS_MESSAGE), citations=[])

    citations = extract_citations(fused)
    messages = build_messages(query, build_context(fused), history=history)
    producer = _produce(llm, messages, deadline=deadline or RunDeadline.unbounded())
    return AnswerStream(producer, citations=citations)
