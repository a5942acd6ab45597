# playground/progress_gate/test_progress_gate.py

"""
[职责] progress gate：验证事件有序投递、终态后关闭、关闭后丢弃、读者断开（detach）与 SSE 编码。
[边界] 只测 ProgressStream 与事件 schema；不跑 pipeline。
[上游关系] services/progress.py、schemas/progress.py。
[下游关系] chat 路由的 text/event-stream 输出。
"""

from __future__ import annotations

import json
import uuid
from typing import List

import pytest

from asset_rag.backend.schemas.generation import AssetPick
from asset_rag.backend.schemas.progress import (
    ErrorEvent,
    ResultEvent,
    StatusEvent,
    encode_sse,
    parse_progress_event,
)
from asset_rag.backend.services.progress import ProgressStream, StreamState


pytestmark = pytest.mark.progress_gate


def _pick() -> AssetPick:
    return AssetPick(
        id=str(uuid.uuid4()),
        dam_id="DAM-001",
        file_name="hero.jpg",
        url=None,
        preview_path="previews/hero.jpg",
        label="Hero shot",
        reason="Closest match.",
    )


async def _collect(stream: ProgressStream) -> List[object]:
    return [e async for e in stream.events()]


@pytest.mark.asyncio
async def test_events_in_order_and_close_after_result() -> None:
    stream = ProgressStream()
    assert stream.emit_status("Analyzing your query...")
    assert stream.emit_status("Ranking by relevance and recency...")
    assert stream.emit_result("Here you go.", [_pick()])

    events = await _collect(stream)

    assert [e.stage for e in events] == ["status", "status", "result"]
    assert events[0].label == "Analyzing your query..."
    assert stream.state is StreamState.CLOSED
    assert isinstance(stream.terminal_event, ResultEvent)


@pytest.mark.asyncio
async def test_emit_after_terminal_is_dropped() -> None:
    stream = ProgressStream()
    stream.emit_error(code="rate_limited", detail="slow down", reset_at="2030-01-01T00:00:00.000Z")

    assert stream.emit_status("late") is False
    assert stream.emit_result("late", []) is False
    assert stream.emit_error(code="internal_error", detail="late") is False

    events = await _collect(stream)
    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)
    assert events[0].reset_at == "2030-01-01T00:00:00.000Z"
    assert len(stream.history) == 1


@pytest.mark.asyncio
async def test_detach_keeps_state_machine() -> None:
    stream = ProgressStream()
    stream.emit_status("Analyzing your query...")
    stream.detach()
    assert stream.detached

    assert stream.emit_status("Generating response...")  # docstring: 写入方不感知断开
    assert stream.emit_result("done", [])
    assert stream.closed
    assert [e.stage for e in stream.history] == ["status", "status", "result"]
    stream.detach()  # docstring: 幂等


def test_sse_frame_encoding() -> None:
    frame = encode_sse(StatusEvent(label="Found 3 potential matches"))
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    body = json.loads(frame[len("data: ") : -2])
    assert body == {"stage": "status", "label": "Found 3 potential matches"}

    err = encode_sse(ErrorEvent(code="bad_request", detail="No user message found."))
    assert "reset_at" not in json.loads(err[len("data: ") : -2])  # docstring: None 字段省略


def test_event_union_roundtrip_by_stage() -> None:
    pick = _pick()
    frame = encode_sse(ResultEvent(message="ok", items=[pick]))
    parsed = parse_progress_event(frame[len("data: ") : -2])
    assert isinstance(parsed, ResultEvent)
    assert parsed.items[0].id == pick.id

    assert isinstance(parse_progress_event({"stage": "status", "label": "x"}), StatusEvent)
    with pytest.raises(ValueError):
        parse_progress_event({"stage": "unknown", "label": "x"})
