# src/mystery_kb_rag/backend/pipelines/base/timing.py

"""
[职责] timing 基础设施：为检索/生成链路提供阶段计时（ms）收集与导出（classify/search/fuse/generate）。
[边界] 不做分布式 tracing；不负责日志落地；仅提供轻量计时器与可序列化的 timing_ms dict。
[上游关系] pipelines/retrieval/pipeline.py 与 services/chat_service.py 用 stage(...) 包裹各阶段。
[下游关系] /query 响应的 timing_ms、结构化日志字段与 gate tests 的结构断言。
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Tuple


def _now_ms() -> float:
    """单调时钟毫秒值，仅用于相对耗时计算。"""
    return time.perf_counter() * 1000.0


@dataclass
class TimingCollector:
    """
    [职责] 收集单次请求各阶段耗时并导出 dict[str, float]（ms）。
    [边界] 单请求/单协程内使用，不做线程安全保证；stage key 不限定集合。
    [上游关系] pipeline 在每阶段 with timing.stage("classify"): ...
    [下游关系] PipelineContext.timing_ms() / 日志字段。
    """

    _stages_ms: Dict[str, float] = field(default_factory=dict)
    _order: list = field(default_factory=list)
    _start_ms: float = field(default_factory=_now_ms)

    def reset(self) -> None:
        self._stages_ms.clear()
        self._order.clear()
        self._start_ms = _now_ms()

    def add_ms(self, key: str, ms: float, *, accumulate: bool = True) -> None:
        """写入某阶段耗时；空 key 忽略，负值截断为 0。"""
        k = str(key).strip()
        if not k:
            return
        v = max(float(ms), 0.0)
        if k not in self._stages_ms:
            self._order.append(k)  # docstring: 保留阶段首次出现顺序
        if accumulate:
            self._stages_ms[k] = self._stages_ms.get(k, 0.0) + v
        else:
            self._stages_ms[k] = v

    @contextmanager
    def stage(self, key: str, *, accumulate: bool = False) -> Iterator[None]:
        """
        [职责] 上下文管理器形式的阶段计时；异常退出同样记录耗时。
        [边界] 默认不累加，避免重复包裹导致叠加。
        [上游关系] pipeline 编排处。
        [下游关系] to_dict()/stages()。
        """
        start = _now_ms()
        try:
            yield
        finally:
            self.add_ms(key, _now_ms() - start, accumulate=accumulate)

    def total_ms(self) -> float:
        return _now_ms() - self._start_ms

    def stages(self) -> Tuple[str, ...]:
        """已记录阶段（按首次写入顺序），用于断言阶段严格顺序执行。"""
        return tuple(self._order)

    def to_dict(self, *, include_total: bool = True, total_key: str = "total") -> Dict[str, float]:
        out = {k: self._stages_ms[k] for k in self._order}
        if include_total:
            out[total_key] = float(self.total_ms())
        return out

    def get(self, key: str, default: Optional[float] = None) -> Optional[float]:
        return self._stages_ms.get(key, default)
