# src/asset_rag/backend/services/rate_limit.py

"""
[职责] Rate Limiter：按调用方身份的固定窗口计数限流（默认 20 次 / 60 秒），进程内存储。
[边界] 不跨进程共享；窗口到期后整体重建（不递减）；每次 check 都计数，包括被拒绝的调用。
[上游关系] api/routers/chat.py 在开流前调用 check()，再由 chat_service 通过 enforce() 决定是否拒绝。
[下游关系] 超限时抛 RateLimitedError（携带 reset_at），下游 embedding/检索/生成均不执行。
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from asset_rag.backend.utils.constants import (
    DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    DEFAULT_RATE_LIMIT_WINDOW_MS,
    RATE_LIMIT_LIMIT_HEADER,
    RATE_LIMIT_REMAINING_HEADER,
    RATE_LIMIT_RESET_HEADER,
)
from asset_rag.backend.utils.errors import RateLimitedError


Clock = Callable[[], float]  # docstring: 返回 epoch 毫秒


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


@dataclass
class RateLimitWindow:
    """Mutable per-identity window; only touched while the limiter lock is held."""

    count: int
    reset_at_ms: float


@dataclass(frozen=True)
class RateLimitInfo:
    """
    [职责] 单次 check 的快照：limit / remaining / reset_at。
    [边界] 不可变；remaining 已截断为 >= 0。
    [上游关系] RateLimiter.check。
    [下游关系] HTTP X-RateLimit-* header、ErrorEvent.reset_at。
    """

    limit: int
    remaining: int
    reset_at_ms: float

    @property
    def limited(self) -> bool:
        return self.remaining <= 0

    @property
    def reset_at_iso(self) -> str:
        dt = datetime.fromtimestamp(self.reset_at_ms / 1000.0, tz=timezone.utc)
        return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_limited(info: RateLimitInfo) -> bool:
    return info.remaining <= 0


def rate_limit_headers(info: RateLimitInfo) -> Dict[str, str]:
    return {
        RATE_LIMIT_LIMIT_HEADER: str(info.limit),
        RATE_LIMIT_REMAINING_HEADER: str(info.remaining),
        RATE_LIMIT_RESET_HEADER: info.reset_at_iso,
    }


class RateLimiter:
    """
    [职责] 固定窗口计数器（identity -> RateLimitWindow），单锁保护读-改-写。
    [边界] 锁内只做内存操作；并发协程/线程下计数不丢失；不持久化。
    [上游关系] main.create_app 构造单例挂到 app.state；测试各自构造独立实例。
    [下游关系] chat 路由与 chat_service。
    """

    def __init__(
        self,
        *,
        max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS,
        window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS,
        clock: Optional[Clock] = None,
    ) -> None:
        if int(max_requests) <= 0:
            raise ValueError("max_requests must be > 0")
        if int(window_ms) <= 0:
            raise ValueError("window_ms must be > 0")
        self.max_requests = int(max_requests)
        self.window_ms = int(window_ms)
        self._clock: Clock = clock or _wall_clock_ms
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()

    def check(self, identity: str) -> RateLimitInfo:
        """
        [职责] 记录一次调用并返回当前窗口快照。
        [边界] now >= reset_at 时新建窗口；计数单调不减。
        [上游关系] chat 路由（每个请求恰好一次）。
        [下游关系] enforce / rate_limit_headers。
        """
        key = str(identity)
        now = float(self._clock())
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at_ms:
                window = RateLimitWindow(count=0, reset_at_ms=now + self.window_ms)
                self._windows[key] = window  # docstring: 过期窗口整体替换
            window.count += 1
            remaining = max(0, self.max_requests - window.count)
            return RateLimitInfo(limit=self.max_requests, remaining=remaining, reset_at_ms=window.reset_at_ms)

    def enforce(self, info: RateLimitInfo) -> None:
        """Raise RateLimitedError when the snapshot says the caller is over the limit."""
        if is_limited(info):
            raise RateLimitedError(reset_at=info.reset_at_iso, limit=info.limit)

    def reset(self, identity: Optional[str] = None) -> None:
        """Forget one identity's window, or every window when identity is None."""
        with self._lock:
            if identity is None:
                self._windows.clear()
            else:
                self._windows.pop(str(identity), None)

    def peek(self, identity: str) -> Optional[RateLimitWindow]:
        with self._lock:
            window = self._windows.get(str(identity))
            return RateLimitWindow(count=window.count, reset_at_ms=window.reset_at_ms) if window else None
