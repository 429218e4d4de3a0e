# src/mystery_kb_rag/backend/api/middleware.py

"""
[职责] API Middleware：注入 trace_id/request_id 并回写响应头，记录请求耗时。
[边界] 不做业务逻辑与异常处理；不重算 pipeline timing。
[上游关系] create_app 注册本 middleware。
[下游关系] deps.get_trace_context 读取 request.state.trace_context。
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from mystery_kb_rag.backend.schemas.audit import TraceContext
from mystery_kb_rag.backend.schemas.ids import UUIDStr, new_uuid
from mystery_kb_rag.backend.utils.logging_ import get_logger, log_event

_TRACE_HEADER = "x-trace-id"  # docstring: trace header 约定
_REQUEST_HEADER = "x-request-id"  # docstring: request header 约定

logger = get_logger("api.middleware")


def _resolve_header_id(value: Optional[str]) -> Optional[str]:
    raw = str(value or "").strip()
    return raw or None  # docstring: 空值回退 None


class TraceContextMiddleware:
    """
    [职责] 注入 trace/request id，并在响应头回写。
    [边界] 纯 ASGI 实现（不缓冲响应体），SSE 流式响应可逐帧透传。
    [上游关系] app.add_middleware 注册。
    [下游关系] deps.get_trace_context 使用 scope["state"]["trace_context"]。
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_ts = time.perf_counter()
        headers = {k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope.get("headers", [])}
        trace_id = _resolve_header_id(headers.get(_TRACE_HEADER)) or str(new_uuid())
        request_id = _resolve_header_id(headers.get(_REQUEST_HEADER)) or str(new_uuid())

        state = scope.setdefault("state", {})
        state["trace_context"] = TraceContext(trace_id=UUIDStr(trace_id), request_id=UUIDStr(request_id), tags={})
        state["trace_id"] = trace_id
        state["request_id"] = request_id

        status_holder = {"status": 0}

        async def _send(message: Message) -> None:
            if message["type"] == "http.response.start":
                status_holder["status"] = int(message.get("status", 0))
                raw_headers = list(message.get("headers", []))
                present = {k.decode("latin-1").lower() for k, _ in raw_headers}
                for name, value in ((_TRACE_HEADER, trace_id), (_REQUEST_HEADER, request_id)):
                    if name not in present:
                        raw_headers.append((name.encode("latin-1"), value.encode("latin-1")))
                message = {**message, "headers": raw_headers}
            await send(message)

        try:
            await self.app(scope, receive, _send)
        finally:
            log_event(
                logger,
                logging.INFO,
                "http.request",
                fields={
                    "trace_id": trace_id,
                    "request_id": request_id,
                    "method": scope.get("method"),
                    "path": scope.get("path"),
                    "status": status_holder["status"],
                    "total_ms": round((time.perf_counter() - start_ts) * 1000.0, 3),
                },
            )
