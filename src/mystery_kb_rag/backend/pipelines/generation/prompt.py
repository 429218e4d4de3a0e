# src/mystery_kb_rag/backend/pipelines/generation/prompt.py

"""
[职责] generation prompt：将融合结果组织为带来源标注的上下文块，拼装 system/history/human 消息，并抽取去重后的引用列表。
[边界] 不做 LLM 调用；不访问 DB；不解析模型输出。
[上游关系] synthesizer 传入 query、融合结果与会话历史。
[下游关系] generator.chat_once / stream_chat_deltas 使用 messages；引用列表进入 SynthesisResult / SSE sources 事件。
"""

from __future__ import annotations

import json
from typing import Any, List, Optional, Sequence

from llama_index.core.llms import ChatMessage, MessageRole

from mystery_kb_rag.backend.pipelines.retrieval.types import Citation, Provenance, RankedItem


__all__ = ["build_context", "build_messages", "extract_citations", "NO_RESULTS_MESSAGE", "SYSTEM_PROMPT"]

NO_RESULTS_MESSAGE = (
    "抱歉，当前知识库中没有找到与您问题相关的信息。请尝试调整查询条件或换一种方式提问。"
)  # docstring: 融合结果为空时的固定回复（不调用模型）

SYSTEM_PROMPT = """你是一个剧本杀知识库助手。请根据以下检索到的知识库内容回答用户的问题。

规则：
1. 仅基于提供的上下文内容回答，不要编造信息。
2. 在回答中引用信息来源时，使用 [来源: 剧本名, 页码] 的格式标注。如果没有页码信息，使用 [来源: 剧本名] 的格式。
3. 如果上下文中没有足够的信息来回答问题，请明确告知用户当前知识库中没有相关信息。
4. 回答应当准确、专业，并尽可能全面。

检索到的上下文内容：
{context}"""  # docstring: system 角色与引用格式约束


def _page_info(source: Provenance) -> str:
    """页码标注：区间 / 单页 / 无。"""
    if source.page_start is None:
        return ""
    if source.page_end is not None and source.page_end != source.page_start:
        return f" (页码 {source.page_start}-{source.page_end})"
    return f" (页码 {source.page_start})"


def build_context(results: Sequence[RankedItem]) -> str:
    """
    [职责] 构建上下文文本：每条结果一个块（来源头 + 缩进 JSON 数据），块间空行分隔。
    [边界] 空列表返回空字符串；JSON 保留非 ASCII 字符。
    """
    blocks: List[str] = []
    for i, item in enumerate(results):
        header = f"[{i + 1}] 来源: {item.provenance.document_name}{_page_info(item.provenance)}"
        data = json.dumps(item.payload.to_fields(), ensure_ascii=False, indent=2)
        blocks.append(f"{header}\n{data}")
    return "\n\n".join(blocks)


def extract_citations(results: Sequence[RankedItem]) -> List[Citation]:
    """
    [职责] 抽取引用：按 (document_name, page_start, page_end) 去重，保持首次出现顺序。
    [边界] 不访问 DB；不补全缺失页码。
    """
    seen = set()
    citations: List[Citation] = []
    for item in results:
        src = item.provenance
        citation = Citation(document_name=src.document_name, page_start=src.page_start, page_end=src.page_end)
        if citation.key in seen:
            continue
        seen.add(citation.key)
        citations.append(citation)
    return citations


def build_messages(
    query: str,
    context: str,
    *,
    history: Optional[Sequence[Any]] = None,
) -> List[ChatMessage]:
    """
    [职责] 组装消息：system(含上下文) -> 历史消息 -> 当前用户问题。
    [边界] 历史消息按原顺序插入，不截断。
    [上游关系] synthesize_answer / stream_answer。
    [下游关系] LLM chat 调用。
    """
    messages = [ChatMessage(role=MessageRole.SYSTEM, content=SYSTEM_PROMPT.format(context=context))]
    for msg in history or ():
        if isinstance(msg, ChatMessage):
            messages.append(msg)
        else:
            messages.append(ChatMessage(role=MessageRole(str(msg["role"])), content=str(msg["content"])))
    messages.append(ChatMessage(role=MessageRole.USER, content=query))
    return messages
