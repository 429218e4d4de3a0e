# playground/conftest.py

"""
[职责] playground 公共 fixture：隔离的 aiosqlite 引擎/会话工厂/会话，脚本化 LLM 与固定向量 embedding。
[边界] 不访问外部模型与默认本地库；每个测试独立 sqlite 文件。
[上游关系] pytest 自动加载。
[下游关系] 各 *_gate 测试复用。
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest
import pytest_asyncio
from llama_index.core.base.embeddings.base import BaseEmbedding
from llama_index.core.llms import (
    CompletionResponse,
    CompletionResponseGen,
    CustomLLM,
    LLMMetadata,
)
from llama_index.core.llms.callbacks import llm_completion_callback
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mystery_kb_rag.backend.db.engine import create_engine, create_sessionmaker, init_db
from mystery_kb_rag.backend.pipelines.base.context import PipelineDeps


class ScriptedLLM(CustomLLM):
    """
    [职责] 离线 LLM：complete 返回 response_text；流式按 chunks 逐个产出。
    [边界] fail_after 非空时流式在产出 fail_after 个分片后抛 RuntimeError；fail_complete 为真时 complete 直接抛错。
    """

    response_text: str = ""
    chunks: List[str] = Field(default_factory=list)
    fail_after: Optional[int] = None
    fail_complete: bool = False
    error_message: str = "model exploded"
    prompts: List[str] = Field(default_factory=list)  # docstring: 记录收到的 prompt（断言历史/上下文）

    @property
    def metadata(self) -> LLMMetadata:
        return LLMMetadata(model_name="scripted", is_chat_model=False)

    @llm_completion_callback()
    def complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponse:
        self.prompts.append(prompt)
        if self.fail_complete:
            raise RuntimeError(self.error_message)
        return CompletionResponse(text=self.response_text)

    @llm_completion_callback()
    def stream_complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponseGen:
        self.prompts.append(prompt)
        pieces = list(self.chunks) or ([self.response_text] if self.response_text else [])

        def _gen() -> CompletionResponseGen:
            text = ""
            for i, delta in enumerate(pieces):
                if self.fail_after is not None and i >= self.fail_after:
                    raise RuntimeError(self.error_message)
                text += delta
                yield CompletionResponse(text=text, delta=delta)
            if self.fail_after is not None and self.fail_after >= len(pieces):
                raise RuntimeError(self.error_message)

        return _gen()


class FixedEmbedding(BaseEmbedding):
    """
    [职责] 固定向量 embedding：按文本查表，未命中返回 default。
    [边界] fail 为真时抛 RuntimeError；calls 记录查询文本。
    """

    vectors: Dict[str, List[float]] = Field(default_factory=dict)
    default: List[float] = Field(default_factory=lambda: [1.0, 0.0, 0.0])
    fail: bool = False
    calls: List[str] = Field(default_factory=list)

    def _lookup(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        return list(self.vectors.get(text, self.default))

    def _get_query_embedding(self, query: str) -> List[float]:
        return self._lookup(query)

    async def _aget_query_embedding(self, query: str) -> List[float]:
        return self._lookup(query)

    def _get_text_embedding(self, text: str) -> List[float]:
        return self._lookup(text)


def intent_json(query_type: str, filters: Optional[Dict[str, Any]] = None, semantic_query: Optional[str] = None) -> str:
    """构造意图分类模型的 JSON 输出。"""
    return json.dumps(
        {"query_type": query_type, "structured_filters": filters, "semantic_query": semantic_query},
        ensure_ascii=False,
    )


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """独立 sqlite 文件引擎（已 create_all）。"""
    db_file = tmp_path / "playground.db"
    eng = create_engine(url=f"sqlite+aiosqlite:///{db_file}", echo=False)
    await init_db(engine=eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as s:
        yield s


@pytest.fixture
def make_deps(session_factory: async_sessionmaker[AsyncSession]):
    """PipelineDeps 工厂：意图输出 JSON + chat 分片 + embedding。"""

    def _make(
        *,
        intent: str,
        chat_chunks: Optional[List[str]] = None,
        chat_text: str = "",
        embedder: Optional[BaseEmbedding] = None,
        **llm_kwargs: Any,
    ) -> PipelineDeps:
        return PipelineDeps(
            session_factory=session_factory,
            intent_llm=ScriptedLLM(response_text=intent),
            chat_llm=ScriptedLLM(response_text=chat_text, chunks=list(chat_chunks or []), **llm_kwargs),
            embedder=embedder or FixedEmbedding(),
            intent_mode="json_prompt",
        )

    return _make


@pytest.fixture
def scripted_llm():
    """ScriptedLLM 构造器（测试内按需配置 response_text/chunks/fail_after）。"""
    return ScriptedLLM


@pytest.fixture
def fixed_embedding():
    """FixedEmbedding 构造器。"""
    return FixedEmbedding


@pytest.fixture(name="intent_json")
def intent_json_fixture():
    return intent_json
