# src/asset_rag/backend/pipelines/base/timing.py

"""
[职责] 阶段计时：为单次查询 pipeline 收集 embed/count/vector/rank/generate 各阶段耗时（ms）。
[边界] 不做分布式 tracing；不写日志；仅导出可 JSON 序列化的 timing dict。
[上游关系] services/chat_service.py 在每个阶段用 stage(...) 包裹。
[下游关系] pipeline 结束时写入结构化日志 timing_ms 字段；gate tests 做结构断言。
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional


def _now_ms() -> float:
    """High-resolution monotonic clock in milliseconds (relative use only)."""
    return time.perf_counter() * 1000.0


@dataclass
class TimingCollector:
    """
    [职责] 收集阶段耗时并导出 dict[str, float]（ms）。
    [边界] 单请求单协程内使用，不做线程安全保证。
    [上游关系] chat_service 每阶段调用 stage(...)。
    [下游关系] to_dict() -> 日志 timing_ms。
    """

    _stages_ms: Dict[str, float] = field(default_factory=dict)
    _start_ms: float = field(default_factory=_now_ms)

    def add_ms(self, key: str, ms: float) -> None:
        k = str(key).strip()
        if not k:
            return
        self._stages_ms[k] = self._stages_ms.get(k, 0.0) + max(0.0, float(ms))  # docstring: 负值截断为 0

    @contextmanager
    def stage(self, key: str) -> Iterator[None]:
        """Time the wrapped block; the duration is recorded even when the block raises."""
        start = _now_ms()
        try:
            yield
        finally:
            self.add_ms(key, _now_ms() - start)

    def total_ms(self) -> float:
        return _now_ms() - self._start_ms

    def to_dict(self, *, include_total: bool = True, total_key: str = "total_ms") -> Dict[str, float]:
        out = {k: round(v, 3) for k, v in self._stages_ms.items()}
        if include_total:
            out[total_key] = round(float(self.total_ms()), 3)
        return out

    def get(self, key: str, default: Optional[float] = None) -> Optional[float]:
        return self._stages_ms.get(key, default)
