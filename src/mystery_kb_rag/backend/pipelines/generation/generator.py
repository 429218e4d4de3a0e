# src/mystery_kb_rag/backend/pipelines/generation/generator.py

"""
[职责] 模型调用层：按 ProviderConfig 构造 LlamaIndex LLM，提供一次性对话、流式对话与结构化输出（native / json_prompt）三种调用。
[边界] 不拼装业务 prompt；不做检索；第三方异常在此包装为 UpstreamModelError / SchemaMismatchError。
[上游关系] intent 分类器调用 predict_structured；synthesizer 调用 chat_once / stream_chat_deltas；api/deps 调用 resolve_llm。
[下游关系] 返回纯文本、文本增量或已校验的 pydantic 对象。
"""

from __future__ import annotations

import inspect
import json
import re
from typing import Any, AsyncIterator, Dict, List, Literal, Mapping, Optional, Sequence, Type, TypeVar

from llama_index.core.llms import (
    LLM,
    ChatMessage,
    CompletionResponse,
    CompletionResponseGen,
    CustomLLM,
    LLMMetadata,
    MessageRole,
)
from llama_index.core.llms.callbacks import llm_completion_callback
from llama_index.core.prompts import ChatPromptTemplate
from pydantic import BaseModel, ValidationError

from mystery_kb_rag.backend.pipelines.base.deadline import RunDeadline
from mystery_kb_rag.backend.schemas.provider import ProviderConfig
from mystery_kb_rag.backend.utils.errors import DomainError, SchemaMismatchError, UpstreamModelError
from mystery_kb_rag.backend.utils.logging_ import truncate_text


__all__ = [
    "resolve_llm",
    "build_chat_messages",
    "chat_once",
    "stream_chat_deltas",
    "predict_structured",
    "strip_json_fences",
]

TModel = TypeVar("TModel", bound=BaseModel)

RAW_OUTPUT_PREVIEW_LEN = 500  # docstring: SchemaMismatchError.detail.raw_output 截断长度

JSON_PROMPT_INSTRUCTION = (
    "\n\n---\n"
    "You MUST respond with valid JSON that conforms to the following JSON Schema:\n"
    "```json\n{schema}\n```\n"
    "Output ONLY the JSON object, no additional text or markdown fences."
)  # docstring: json_prompt 模式追加到最后一条消息的指令

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def _filter_kwargs(fn: Any, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """
    [职责] 过滤参数，仅保留目标构造函数支持的关键字（None 值丢弃）。
    [边界] 构造函数支持 **kwargs 时全部透传（避免静默丢参）。
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


class CannedLLM(CustomLLM):
    """
    [职责] 离线 mock provider：固定返回 response_text，流式时按 chunk_size 切分。
    [边界] 不理解输入；仅用于无外部模型的本地运行。
    """

    response_text: str = ""
    chunk_size: int = 16
    model_name: str = "mock"

    @property
    def metadata(self) -> LLMMetadata:
        return LLMMetadata(model_name=self.model_name, is_chat_model=False)

    @llm_completion_callback()
    def complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponse:
        return CompletionResponse(text=self.response_text)

    @llm_completion_callback()
    def stream_complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponseGen:
        text = ""
        size = max(int(self.chunk_size), 1)
        for i in range(0, len(self.response_text), size):
            delta = self.response_text[i : i + size]
            text += delta
            yield CompletionResponse(text=text, delta=delta)


MOCK_RESPONSES = {
    "intent": json.dumps({"query_type": "semantic", "structured_filters": None, "semantic_query": None}),
    "chat": "（离线模式）以下回答基于检索到的知识库内容生成。[来源: mock]",
}  # docstring: mock provider 的固定输出（按用途）


def resolve_llm(config: ProviderConfig, *, temperature: Optional[float] = None) -> LLM:
    """
    [职责] 根据 provider/model 构造 LlamaIndex LLM 实例。
    [边界] openai_like 必须提供 base_url 与 api_key；未知 provider 抛 ValueError；不读取环境变量。
    [上游关系] api/deps.get_pipeline_deps（intent: temperature=0，chat: temperature=0.3）。
    [下游关系] predict_structured / chat_once / stream_chat_deltas。
    """
    provider = config.provider
    model = config.model

    if provider == "mock":
        return CannedLLM(response_text=MOCK_RESPONSES.get(config.purpose, ""), model_name=model or "mock")
    if provider == "openai":
        from llama_index.llms.openai import OpenAI

        kwargs = {
            "model": model,
            "temperature": temperature,
            "api_key": config.api_key,
            "api_base": config.base_url,
        }
        return OpenAI(**_filter_kwargs(OpenAI.__init__, kwargs))
    if provider == "openai_like":
        prefix = config.purpose.upper()
        if not config.base_url:
            raise ValueError(f"{prefix}_BASE_URL is required for openai_like provider")
        if not config.api_key:
            raise ValueError(f"{prefix}_API_KEY is required for openai_like provider")
        from llama_index.llms.openai_like import OpenAILike

        kwargs = {
            "model": model,
            "temperature": temperature,
            "api_key": config.api_key,
            "api_base": config.base_url,
            "is_chat_model": True,
        }
        return OpenAILike(**_filter_kwargs(OpenAILike.__init__, kwargs))
    if provider == "ollama":
        from llama_index.llms.ollama import Ollama  # type: ignore

        kwargs = {
            "model": model,
            "temperature": temperature,
            "base_url": config.base_url,
            "request_timeout": config.request_timeout_s,
        }
        return Ollama(**_filter_kwargs(Ollama.__init__, kwargs))
    if provider == "dashscope":
        from llama_index.llms.dashscope import DashScope  # type: ignore

        kwargs = {"model_name": model, "temperature": temperature, "api_key": config.api_key}
        return DashScope(**_filter_kwargs(DashScope.__init__, kwargs))

    raise ValueError(
        f"unsupported model provider: {provider!r} (supported: mock, openai, openai_like, ollama, dashscope)"
    )


def _resolve_role(role: Any) -> MessageRole:
    if isinstance(role, MessageRole):
        return role
    raw = str(role or "").strip().lower()
    try:
        return MessageRole(raw)
    except ValueError:
        return MessageRole.USER  # docstring: 未知角色回退为 user


def build_chat_messages(messages: Sequence[Any]) -> List[ChatMessage]:
    """将 dict/ChatMessage 混合列表统一为 ChatMessage 列表（仅处理 role/content）。"""
    out: List[ChatMessage] = []
    for msg in messages:
        if isinstance(msg, ChatMessage):
            out.append(msg)
            continue
        if isinstance(msg, Mapping):
            out.append(ChatMessage(role=_resolve_role(msg.get("role")), content=str(msg.get("content") or "")))
            continue
        raise TypeError(f"unsupported message type: {type(msg).__name__}")
    return out


def _model_name(llm: Any) -> str:
    meta = getattr(llm, "metadata", None)
    return str(getattr(meta, "model_name", "") or "")


def _upstream_error(exc: BaseException, *, llm: Any, op: str) -> UpstreamModelError:
    return UpstreamModelError(
        message=f"model call failed ({op})",
        detail={"model": _model_name(llm), "op": op, "error_type": type(exc).__name__},
        cause=exc,
    )


def _extract_text(response: Any) -> str:
    """从 ChatResponse / CompletionResponse 中提取文本。"""
    if response is None:
        return ""
    msg = getattr(response, "message", None)
    if msg is not None and hasattr(msg, "content"):
        return str(msg.content or "")
    text = getattr(response, "text", None)
    if text is not None:
        return str(text)
    return str(response)


async def chat_once(
    llm: LLM,
    messages: Sequence[ChatMessage],
    *,
    deadline: Optional[RunDeadline] = None,
) -> str:
    """
    [职责] 一次性对话调用，返回完整文本。
    [边界] 截止时间/取消错误原样传播；其他异常包装为 UpstreamModelError。
    """
    deadline = deadline or RunDeadline.unbounded()
    try:
        response = await deadline.run(llm.achat(list(messages)), stage="chat")
    except DomainError:
        raise
    except Exception as exc:
        raise _upstream_error(exc, llm=llm, op="chat") from exc
    return _extract_text(response)


async def stream_chat_deltas(llm: LLM, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:
    """
    [职责] 流式对话调用，逐个产出非空文本增量。
    [边界] 不处理截止时间（流生产者以 RunDeadline.run 包裹每次取分片）；不包装异常（由流生产者统一转换）。
    """
    gen = await llm.astream_chat(list(messages))
    try:
        async for response in gen:
            delta = getattr(response, "delta", None)
            if delta:
                yield str(delta)
    finally:
        aclose = getattr(gen, "aclose", None)
        if aclose is not None:
            await aclose()


def strip_json_fences(raw: str) -> str:
    """去除 ```json ... ``` 代码围栏（如有）。"""
    cleaned = (raw or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned))
    return cleaned


def _schema_mismatch(raw: str, exc: BaseException, *, llm: Any, reason: str) -> SchemaMismatchError:
    return SchemaMismatchError(
        message=f"structured output {reason}",
        detail={
            "model": _model_name(llm),
            "raw_output": truncate_text(raw, max_len=RAW_OUTPUT_PREVIEW_LEN) or "",
            "error_type": type(exc).__name__,
        },
        cause=exc,
    )


def parse_structured_output(raw: str, output_cls: Type[TModel], *, llm: Any = None) -> TModel:
    """
    [职责] json_prompt 模式的解析与校验：去围栏 → JSON 解析 → pydantic 校验。
    [边界] 任何失败均抛 SchemaMismatchError（detail.raw_output 为截断后的原始输出）。
    """
    cleaned = strip_json_fences(raw)
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        raise _schema_mismatch(raw, exc, llm=llm, reason="is not valid JSON") from exc
    try:
        return output_cls.model_validate(data)
    except ValidationError as exc:
        raise _schema_mismatch(raw, exc, llm=llm, reason="does not match the expected schema") from exc


async def predict_structured(
    llm: LLM,
    output_cls: Type[TModel],
    prompt: ChatPromptTemplate,
    *,
    mode: Literal["native", "json_prompt"],
    deadline: Optional[RunDeadline] = None,
    **prompt_args: Any,
) -> TModel:
    """
    [职责] 结构化输出调用：
           native      -> LLM.astructured_predict(output_cls, prompt, **prompt_args)
           json_prompt -> 在最后一条消息追加 JSON Schema 指令，achat 后解析校验。
    [边界] 调用失败 -> UpstreamModelError；输出不合法 -> SchemaMismatchError；不重试、不回退默认值。
    [上游关系] intent.classify_intent。
    [下游关系] 已校验的 output_cls 实例。
    """
    deadline = deadline or RunDeadline.unbounded()

    if mode == "native":
        try:
            return await deadline.run(
                llm.astructured_predict(output_cls, prompt, **prompt_args),
                stage="structured_predict",
            )
        except DomainError:
            raise
        except (ValidationError, ValueError) as exc:
            raise _schema_mismatch(str(exc), exc, llm=llm, reason="does not match the expected schema") from exc
        except Exception as exc:
            raise _upstream_error(exc, llm=llm, op="structured_predict") from exc

    messages = prompt.format_messages(**prompt_args)
    schema_text = json.dumps(output_cls.model_json_schema(), indent=2, ensure_ascii=False)
    last = messages[-1]
    messages[-1] = ChatMessage(
        role=last.role,
        content=str(last.content or "") + JSON_PROMPT_INSTRUCTION.format(schema=schema_text),
    )
    raw = await chat_once(llm, messages, deadline=deadline)
    return parse_structured_output(raw, output_cls, llm=llm)
