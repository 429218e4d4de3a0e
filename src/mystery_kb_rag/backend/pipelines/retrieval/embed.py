# src/mystery_kb_rag/backend/pipelines/retrieval/embed.py

"""
[职责] embedding 工厂：根据 EmbeddingConfig 构造 LlamaIndex BaseEmbedding（openai/openai_like/ollama/dashscope/mock）。
[边界] 不读取环境变量（只读传入配置）；不执行 embedding 调用；mock 为确定性 hash 向量（非语义，仅离线/测试用）。
[上游关系] api/deps.get_pipeline_deps 用 EmbeddingConfig.from_settings(settings) 构造配置后调用。
[下游关系] semantic_search 调用 embedder.aget_query_embedding。
"""

from __future__ import annotations

import hashlib
import inspect
from typing import Any, Dict, List

from llama_index.core.base.embeddings.base import BaseEmbedding

from mystery_kb_rag.backend.schemas.provider import EmbeddingConfig


def _filter_kwargs(fn: Any, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """
    [职责] 过滤参数，仅保留目标构造函数支持的关键字（None 值丢弃）。
    [边界] 不做值校验；构造函数支持 **kwargs 时全部透传。
    """
    clean = {k: v for k, v in kwargs.items() if v is not None}
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return {}
    for p in sig.parameters.values():
        if p.kind == inspect.Parameter.VAR_KEYWORD:
            return clean
    return {k: v for k, v in clean.items() if k in sig.parameters}


class HashEmbedding(BaseEmbedding):
    """Deterministic sha256-based embedding for offline runs (mock provider)."""

    dim: int = 64

    def _hash_to_vec(self, text: str) -> List[float]:
        seed = hashlib.sha256(text.encode("utf-8")).digest()
        vals: List[float] = []
        while len(vals) < self.dim:
            for b in seed:
                vals.append((b / 255.0) * 2.0 - 1.0)  # docstring: 映射到 [-1, 1]
                if len(vals) >= self.dim:
                    break
            seed = hashlib.sha256(seed).digest()  # docstring: 扩展伪随机序列
        return vals

    def _get_query_embedding(self, query: str) -> List[float]:
        return self._hash_to_vec(query)

    async def _aget_query_embedding(self, query: str) -> List[float]:
        return self._hash_to_vec(query)

    def _get_text_embedding(self, text: str) -> List[float]:
        return self._hash_to_vec(text)


def resolve_embedder(config: EmbeddingConfig) -> BaseEmbedding:
    """
    [职责] 根据 provider 构造 embedding 实例。
    [边界] openai_like 必须提供 base_url 与 api_key；未知 provider 抛 ValueError。
    [上游关系] api/deps、测试。
    [下游关系] semantic_search。
    """
    provider = config.provider
    model = config.model

    if provider == "mock":
        return HashEmbedding(model_name=model or "hash", dim=int(config.dimensions))
    if provider == "openai":
        from llama_index.embeddings.openai import OpenAIEmbedding

        kwargs = {
            "model": model,
            "dimensions": config.dimensions,
            "api_key": config.api_key,
            "api_base": config.base_url,
        }
        return OpenAIEmbedding(**_filter_kwargs(OpenAIEmbedding.__init__, kwargs))
    if provider == "openai_like":
        if not config.base_url:
            raise ValueError("EMBEDDING_BASE_URL is required for openai_like provider")
        if not config.api_key:
            raise ValueError("EMBEDDING_API_KEY is required for openai_like provider")
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        kwargs = {
            "model_name": model,
            "dimensions": config.dimensions,
            "api_key": config.api_key,
            "api_base": config.base_url,
        }
        return OpenAILikeEmbedding(**_filter_kwargs(OpenAILikeEmbedding.__init__, kwargs))
    if provider == "ollama":
        from llama_index.embeddings.ollama import OllamaEmbedding  # type: ignore

        kwargs = {"model_name": model, "base_url": config.base_url}
        return OllamaEmbedding(**_filter_kwargs(OllamaEmbedding.__init__, kwargs))
    if provider == "dashscope":
        from llama_index.embeddings.dashscope import DashScopeEmbedding  # type: ignore

        kwargs = {"model_name": model, "api_key": config.api_key}
        return DashScopeEmbedding(**_filter_kwargs(DashScopeEmbedding.__init__, kwargs))

    raise ValueError(
        f"unsupported embedding provider: {provider!r} (supported: mock, openai, openai_like, ollama, dashscope)"
    )
