# playground/rate_limit_gate/test_rate_limit_gate.py

"""
[职责] rate limit gate：验证固定窗口计数、窗口重置、header 映射与并发下计数不丢失。
[边界] 使用可注入时钟；每个测试构造独立 RateLimiter（无全局状态）。
[上游关系] services/rate_limit.py。
[下游关系] chat 路由 X-RateLimit-* header 与 chat_service 的 rate_limited 错误事件。
"""

from __future__ import annotations

import threading
from datetime import datetime

import pytest

from asset_rag.backend.services.rate_limit import RateLimiter, rate_limit_headers
from asset_rag.backend.utils.errors import RateLimitedError


pytestmark = pytest.mark.rate_limit_gate


class FakeClock:
    def __init__(self, start_ms: float = 1_700_000_000_000.0) -> None:
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def test_window_exhaustion_and_reset() -> None:
    """21 calls in one window: the 21st is rejected; a call after reset_at starts a new window."""
    clock = FakeClock()
    limiter = RateLimiter(max_requests=20, window_ms=60_000, clock=clock)

    infos = []
    for _ in range(21):
        infos.append(limiter.check("user-a"))
        clock.advance(100)

    assert infos[0].remaining == 19
    assert not infos[0].limited
    last = infos[20]
    assert last.remaining == 0
    assert last.limited
    assert last.reset_at_ms > clock.now  # docstring: reset 在未来
    with pytest.raises(RateLimitedError) as ei:
        limiter.enforce(last)
    assert ei.value.error_code == "rate_limited"
    assert ei.value.reset_at == last.reset_at_iso

    clock.now = last.reset_at_ms
    after = limiter.check("user-a")
    assert after.remaining == 19  # docstring: limit - 1
    assert not after.limited
    limiter.enforce(after)


def test_remaining_never_negative_and_identities_isolated() -> None:
    limiter = RateLimiter(max_requests=3, window_ms=1_000, clock=FakeClock())
    seen = [limiter.check("a").remaining for _ in range(6)]
    assert seen == [2, 1, 0, 0, 0, 0]
    assert limiter.check("b").remaining == 2

    window = limiter.peek("a")
    assert window is not None and window.count == 6


def test_reset_contract() -> None:
    limiter = RateLimiter(max_requests=2, window_ms=1_000, clock=FakeClock())
    limiter.check("a")
    limiter.check("b")
    limiter.reset("a")
    assert limiter.peek("a") is None
    assert limiter.peek("b") is not None
    limiter.reset()
    assert limiter.peek("b") is None


def test_headers_shape() -> None:
    clock = FakeClock(start_ms=0.0)
    limiter = RateLimiter(max_requests=5, window_ms=60_000, clock=clock)
    headers = rate_limit_headers(limiter.check("a"))

    assert headers["X-RateLimit-Limit"] == "5"
    assert headers["X-RateLimit-Remaining"] == "4"
    reset = headers["X-RateLimit-Reset"]
    assert reset.endswith("Z")
    assert datetime.fromisoformat(reset.replace("Z", "+00:00")).timestamp() == pytest.approx(60.0)


def test_concurrent_checks_do_not_lose_counts() -> None:
    limiter = RateLimiter(max_requests=10_000, window_ms=60_000, clock=FakeClock())
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        for _ in range(250):
            limiter.check("shared")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    window = limiter.peek("shared")
    assert window is not None
    assert window.count == 2_000


def test_invalid_configuration() -> None:
    with pytest.raises(ValueError):
        RateLimiter(max_requests=0)
    with pytest.raises(ValueError):
        RateLimiter(window_ms=0)
