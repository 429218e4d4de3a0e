# src/mystery_kb_rag/backend/pipelines/base/deadline.py

"""
[职责] RunDeadline：单次请求的取消信号 + 可选截止时间，在每个挂起点（模型调用/embedding/存储查询/流式分片）检查。
[边界] 不创建任务；不做重试；超时通过 asyncio.wait_for 限定单次 await，取消通过显式 cancel() 标记。
[上游关系] services/api 为每个请求创建一个 RunDeadline 并沿 pipeline 各阶段透传。
[下游关系] intent/semantic/structured/synthesizer 在 await 前调用 check()/run()；SSE 边界在客户端断开时调用 cancel()。
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from mystery_kb_rag.backend.utils.errors import DeadlineExceededError, PipelineCancelledError


T = TypeVar("T")


class RunDeadline:
    """
    [职责] 请求级截止时间与取消标记。
    [边界] timeout_s=None 表示无截止时间（仅响应 cancel）。
    [上游关系] RunDeadline(timeout_s=settings.PIPELINE_DEADLINE_S)。
    [下游关系] check(stage) 抛 DeadlineExceededError / PipelineCancelledError。
    """

    def __init__(self, timeout_s: Optional[float] = None) -> None:
        if timeout_s is not None and float(timeout_s) <= 0:
            raise ValueError("timeout_s must be positive")
        self.timeout_s = float(timeout_s) if timeout_s is not None else None
        self._started = time.monotonic()
        self._cancelled = False
        self._reason: Optional[str] = None

    @classmethod
    def unbounded(cls) -> "RunDeadline":
        return cls(None)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """标记取消（幂等）；后续 check()/run() 抛 PipelineCancelledError。"""
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    def remaining(self) -> Optional[float]:
        """剩余秒数（无截止时间返回 None；已过期返回 0）。"""
        if self.timeout_s is None:
            return None
        return max(self.timeout_s - (time.monotonic() - self._started), 0.0)

    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= 0

    def check(self, stage: str) -> None:
        """
        [职责] 挂起点检查：已取消或已过期时立即抛错。
        [边界] 不阻塞；不修改状态。
        [上游关系] 各 stage 在发起 await 前调用。
        [下游关系] 错误原样向上传播（pipeline 不捕获）。
        """
        if self._cancelled:
            raise PipelineCancelledError(
                message=f"request cancelled during {stage}",
                detail={"stage": stage, "reason": self._reason or "cancelled"},
            )
        if self.expired():
            raise DeadlineExceededError(
                message=f"deadline exceeded before {stage}",
                detail={"stage": stage, "timeout_s": self.timeout_s},
            )

    async def run(self, awaitable: Awaitable[T], *, stage: str) -> T:
        """
        [职责] 以剩余时间为上限执行一次 await；超时转换为 DeadlineExceededError。
        [边界] 检查失败时关闭未启动的协程，避免 "never awaited" 警告。
        [上游关系] intent/semantic/structured/synthesizer 包裹模型与存储调用。
        [下游关系] 返回 awaitable 的结果。
        """
        try:
            self.check(stage)
        except (DeadlineExceededError, PipelineCancelledError):
            close = getattr(awaitable, "close", None)
            if callable(close):
                close()
            raise

        left = self.remaining()
        if left is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=left)
        except asyncio.TimeoutError as exc:
            raise DeadlineExceededError(
                message=f"deadline exceeded during {stage}",
                detail={"stage": stage, "timeout_s": self.timeout_s},
                cause=exc,
            ) from exc
