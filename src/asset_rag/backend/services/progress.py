# src/asset_rag/backend/services/progress.py

"""
[职责] Progress Stream：单请求的有序事件通道，状态机 OPEN -> (STATUS)* -> (RESULT|ERROR) -> CLOSED。
[边界] 首个终态事件后关闭；关闭或 detach 之后的写入静默丢弃（debug 日志），从不抛错；不保证 exactly-once 送达。
[上游关系] services/chat_service.py 作为唯一写者。
[下游关系] api/routers/chat.py 通过 events() 读取并编码为 SSE 帧。
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, List, Optional, Sequence, Union

from asset_rag.backend.schemas.generation import AssetPick
from asset_rag.backend.schemas.progress import ErrorEvent, ResultEvent, StatusEvent, is_terminal
from asset_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("services.progress")

Event = Union[StatusEvent, ResultEvent, ErrorEvent]

_CLOSE = object()  # docstring: 队列结束哨兵


class StreamState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ProgressStream:
    """
    [职责] 事件写入（emit_*）与读取（events）的异步通道。
    [边界] 单写者；写入是非阻塞的（无界队列）；读者断开后调用 detach()。
    [上游关系] chat_service。
    [下游关系] chat 路由 SSE 编码。
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._state = StreamState.OPEN
        self._detached = False
        self._history: List[Event] = []  # docstring: 已接受事件（测试与日志用）

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is StreamState.CLOSED

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def history(self) -> Sequence[Event]:
        return tuple(self._history)

    @property
    def terminal_event(self) -> Optional[Event]:
        if self._history and is_terminal(self._history[-1]):
            return self._history[-1]
        return None

    def emit(self, event: Event) -> bool:
        """
        [职责] 写入一个事件；终态事件写入后立即关闭。
        [边界] 已关闭返回 False 并丢弃；detach 后仍推进状态机但不入队。
        [上游关系] emit_status / emit_result / emit_error。
        [下游关系] events() 读者。
        """
        if self._state is StreamState.CLOSED:
            log_event(
                logger,
                logging.DEBUG,
                "progress event dropped after close",
                fields={"stage": event.stage},
            )
            return False

        self._history.append(event)
        if not self._detached:
            self._queue.put_nowait(event)
        if is_terminal(event):
            self._close()
        return True

    def emit_status(self, label: str) -> bool:
        return self.emit(StatusEvent(label=label))

    def emit_result(self, message: str, items: Sequence[AssetPick]) -> bool:
        return self.emit(ResultEvent(message=message, items=list(items)))

    def emit_error(self, *, code: str, detail: str, reset_at: Optional[str] = None) -> bool:
        return self.emit(ErrorEvent(code=code, detail=detail, reset_at=reset_at))

    def detach(self) -> None:
        """Caller went away: keep the state machine, stop buffering events."""
        if self._detached:
            return
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()  # docstring: 丢弃未读事件
        if self._state is StreamState.CLOSED:
            return
        log_event(logger, logging.INFO, "progress stream detached by caller")

    def _close(self) -> None:
        self._state = StreamState.CLOSED
        if not self._detached:
            self._queue.put_nowait(_CLOSE)

    async def events(self) -> AsyncIterator[Event]:
        """Yield events in emission order until the terminal event has been yielded."""
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield item  # type: ignore[misc]
