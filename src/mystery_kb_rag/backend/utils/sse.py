# src/mystery_kb_rag/backend/utils/sse.py

"""
[职责] SSE 线协议工具：事件编码（data: <compact json>\n\n）、[DONE] 终止帧、以及缓冲区解析（客户端/测试复用）。
[边界] 不负责 HTTP 响应构建；不做重连/Last-Event-ID；只处理 data 行。
[上游关系] services/chat_service.py 编码事件；测试与客户端用 parse_sse_buffer 还原事件序列。
[下游关系] StreamingResponse 直接输出编码后的字符串。
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


DATA_PREFIX = "data: "  # docstring: SSE data 行前缀
DONE_SENTINEL = "[DONE]"  # docstring: 流结束哨兵
DONE_EVENT = f"{DATA_PREFIX}{DONE_SENTINEL}\n\n"  # docstring: 流结束帧（永远是最后一帧）

SSEEvent = Dict[str, Any]


def encode_event(payload: Mapping[str, Any]) -> str:
    """
    [职责] 将事件 payload 编码为单个 SSE 帧（紧凑 JSON，保留 UTF-8 字符）。
    [边界] payload 必须 JSON-safe；不附加 event/id 字段。
    [上游关系] chat_service 的各事件构造函数调用。
    [下游关系] StreamingResponse 输出。
    """
    body = json.dumps(dict(payload), ensure_ascii=False, separators=(",", ":"))
    return f"{DATA_PREFIX}{body}\n\n"


def session_event(session_id: str) -> str:
    return encode_event({"type": "session_id", "session_id": str(session_id)})


def chunk_event(content: str) -> str:
    return encode_event({"type": "chunk", "content": content})


def sources_event(sources: Sequence[Mapping[str, Any]]) -> str:
    return encode_event({"type": "sources", "sources": [dict(s) for s in sources]})


def error_event(message: str) -> str:
    return encode_event({"type": "error", "error": message})


def parse_sse_buffer(buffer: str) -> Tuple[List[SSEEvent], bool, str]:
    """
    [职责] 解析 SSE 缓冲区为事件列表，返回 (events, done, remaining)。
    [边界] 最后一行视为未完成（原样返回 remaining）；跳过非 data 行与非法 JSON；遇到 [DONE] 立即停止。
    [上游关系] 客户端增量读取字节流后反复调用（remaining 拼接下一段）。
    [下游关系] 测试断言事件顺序与内容。
    """
    events: List[SSEEvent] = []
    done = False

    lines = buffer.split("\n")
    remaining = lines.pop() if lines else ""  # docstring: 末尾不完整行留给下一轮

    for line in lines:
        trimmed = line.strip()
        if not trimmed.startswith(DATA_PREFIX):
            continue
        payload = trimmed[len(DATA_PREFIX) :]

        if payload == DONE_SENTINEL:
            done = True
            break

        evt = _loads_event(payload)
        if evt is not None:
            events.append(evt)

    return events, done, remaining


def _loads_event(payload: str) -> Optional[SSEEvent]:
    try:
        evt = json.loads(payload)
    except ValueError:
        return None  # docstring: 跳过非法 JSON
    if isinstance(evt, dict) and "type" in evt:
        return evt
    return None
