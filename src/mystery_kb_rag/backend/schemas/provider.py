# src/mystery_kb_rag/backend/schemas/provider.py

"""
[职责] Provider 配置契约：按用途（intent/chat）描述 chat 模型，按 embedding 描述向量模型；由 Settings 一次性构建。
[边界] 不构造 LLM/Embedding 实例；不读取环境变量（只读传入的 Settings）；不做网络校验。
[上游关系] api/deps 或 services 在启动/请求时调用 from_settings(...)。
[下游关系] generator.resolve_llm / embed.resolve_embedder 消费本配置；snapshot() 写入 PipelineContext.provider_snapshot。
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .audit import ProviderSnapshot


LLMPurpose = Literal["intent", "chat"]
StructuredOutputMode = Literal["auto", "native", "json_prompt"]

SUPPORTED_LLM_PROVIDERS = ("mock", "openai", "openai_like", "ollama", "dashscope")  # docstring: chat provider 白名单
SUPPORTED_EMBEDDING_PROVIDERS = ("mock", "openai", "openai_like", "ollama", "dashscope")  # docstring: embedding 白名单
NATIVE_STRUCTURED_PROVIDERS = frozenset({"openai", "mock"})  # docstring: auto 模式下走 native 结构化输出的 provider


def normalize_provider(provider: Optional[str]) -> str:
    """规范化 provider 字符串（小写、去空白、'-' 归一为 '_'）。"""
    return str(provider or "").strip().lower().replace("-", "_")


PROVIDER_FALLBACK_SETTINGS = {
    "openai": ("OPENAI_API_KEY", "OPENAI_API_BASE"),
    "dashscope": ("DASHSCOPE_API_KEY", None),
}  # docstring: provider 级共享凭据（用途级字段缺省时回退）


def _credentials(
    settings: Any,
    provider: str,
    *,
    api_key: Optional[str],
    base_url: Optional[str],
) -> Tuple[Optional[str], Optional[str]]:
    """用途级 api_key/base_url 缺省时回退到 provider 级 Settings 字段（显式传入工厂，不写入进程环境）。"""
    key_field, base_field = PROVIDER_FALLBACK_SETTINGS.get(provider, (None, None))
    if not api_key and key_field:
        api_key = getattr(settings, key_field, None) or None
    if not base_url and base_field:
        base_url = getattr(settings, base_field, None) or None
    return api_key, base_url


class ProviderConfig(BaseModel):
    """
    [职责] 单一用途的 chat 模型配置（provider/model/base_url/api_key/结构化输出模式）。
    [边界] api_key 不进入 repr 与 snapshot；openai_like 的必填项由 resolve_llm 校验。
    [上游关系] ProviderConfig.from_settings(settings, purpose)。
    [下游关系] resolve_llm(config) 构造 LlamaIndex LLM；intent 根据 structured_output_mode() 选择策略。
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    purpose: LLMPurpose
    provider: str = Field(default="openai")
    model: str = Field(default="gpt-4o")
    base_url: Optional[str] = Field(default=None)
    api_key: Optional[str] = Field(default=None, repr=False)
    structured_output: StructuredOutputMode = Field(default="auto")
    request_timeout_s: float = Field(default=120.0, gt=0)  # docstring: ollama 等本地模型的请求超时

    @classmethod
    def from_settings(cls, settings: Any, purpose: LLMPurpose) -> "ProviderConfig":
        """
        [职责] 从 Settings 读取 {PURPOSE}_PROVIDER/_MODEL/_BASE_URL/_API_KEY/_STRUCTURED_OUTPUT。
        [边界] 仅读取属性；缺失字段回退默认值。
        [上游关系] api/deps.get_pipeline_deps 调用。
        [下游关系] resolve_llm。
        """
        prefix = purpose.upper()
        mode = str(getattr(settings, f"{prefix}_STRUCTURED_OUTPUT", "auto") or "auto").strip().lower()
        provider = normalize_provider(getattr(settings, f"{prefix}_PROVIDER", "openai") or "openai")
        api_key, base_url = _credentials(
            settings,
            provider,
            api_key=getattr(settings, f"{prefix}_API_KEY", None) or None,
            base_url=getattr(settings, f"{prefix}_BASE_URL", None) or None,
        )
        return cls(
            purpose=purpose,
            provider=provider,
            model=str(getattr(settings, f"{prefix}_MODEL", "gpt-4o") or "gpt-4o").strip(),
            base_url=base_url,
            api_key=api_key,
            structured_output=mode,  # type: ignore[arg-type]
            request_timeout_s=float(getattr(settings, "OLLAMA_REQUEST_TIMEOUT_S", 120) or 120),
        )

    def structured_output_mode(self) -> Literal["native", "json_prompt"]:
        """auto 模式：openai/mock 走 native，其余 provider 走 json_prompt。"""
        if self.structured_output == "native":
            return "native"
        if self.structured_output == "json_prompt":
            return "json_prompt"
        return "native" if self.provider in NATIVE_STRUCTURED_PROVIDERS else "json_prompt"

    def snapshot(self, **params: Any) -> ProviderSnapshot:
        return ProviderSnapshot(
            kind="llm",
            provider=self.provider or "unknown",
            name=self.model or "unknown",
            params={"purpose": self.purpose, "structured_output": self.structured_output_mode(), **params},
            endpoint=self.base_url,
        )


class EmbeddingConfig(BaseModel):
    """
    [职责] embedding 模型配置（provider/model/dimensions/base_url/api_key）。
    [边界] dimensions 仅作为请求参数与 mock 维度；不校验存储中的向量维度。
    [上游关系] EmbeddingConfig.from_settings(settings)。
    [下游关系] resolve_embedder(config)。
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    provider: str = Field(default="openai")
    model: str = Field(default="text-embedding-3-small")
    dimensions: int = Field(default=1536, gt=0)
    base_url: Optional[str] = Field(default=None)
    api_key: Optional[str] = Field(default=None, repr=False)

    @classmethod
    def from_settings(cls, settings: Any) -> "EmbeddingConfig":
        provider = normalize_provider(getattr(settings, "EMBEDDING_PROVIDER", "openai") or "openai")
        api_key, base_url = _credentials(
            settings,
            provider,
            api_key=getattr(settings, "EMBEDDING_API_KEY", None) or None,
            base_url=getattr(settings, "EMBEDDING_BASE_URL", None) or None,
        )
        return cls(
            provider=provider,
            model=str(getattr(settings, "EMBEDDING_MODEL", "text-embedding-3-small") or "text-embedding-3-small"),
            dimensions=int(getattr(settings, "EMBEDDING_DIMENSIONS", 1536) or 1536),
            base_url=base_url,
            api_key=api_key,
        )

    def snapshot(self) -> ProviderSnapshot:
        return ProviderSnapshot(
            kind="embedder",
            provider=self.provider or "unknown",
            name=self.model or "unknown",
            params={"dimensions": self.dimensions},
            endpoint=self.base_url,
        )
