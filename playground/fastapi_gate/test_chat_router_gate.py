# playground/fastapi_gate/test_chat_router_gate.py

"""
[职责] chat router gate：验证 POST /chat 的 SSE 输出、限流 header、trace header 回写，以及 /history 读写。
[边界] 使用 create_app(pipeline_deps=...) 注入内存替身（embedder/index）与 mock 生成器；DB 为临时 sqlite。
[上游关系] api/routers/{chat,history}.py、api/middleware.py、main.create_app。
[下游关系] 前端依赖 data: {json} 帧格式与 X-RateLimit-* header。
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from asset_rag.backend.main import create_app
from asset_rag.backend.pipelines.generation.pipeline import ResponseGenerator
from asset_rag.backend.pipelines.retrieval.types import Candidate
from asset_rag.backend.services.chat_service import ChatPipelineDeps, drain_pipelines
from asset_rag.backend.services.conversation_store import ConversationStore
from asset_rag.backend.services.rate_limit import RateLimiter


pytestmark = pytest.mark.fastapi_gate

NOW = 1_700_000_000_000.0


class FakeEmbedder:
    async def embed(self, text: str) -> List[float]:
        return [0.0, 1.0]


class FakeIndex:
    def __init__(self, candidates: List[Candidate]) -> None:
        self.candidates = candidates

    async def query(self, vector: List[float], *, top_k: int = 30, filter: Optional[dict] = None) -> List[Candidate]:
        return list(self.candidates)


def _candidate() -> Candidate:
    aid = str(uuid.uuid4())
    return Candidate(
        asset_id=aid,
        description="Team meeting in a bright office",
        similarity=0.7,
        acquired_at_ms=NOW - 86_400_000.0,
        metadata={"preview_path": f"previews/{aid}.jpg", "dam_id": "DAM-7"},
    )


def _build(session_factory, *, max_requests: int = 20) -> Dict[str, Any]:
    async def _count() -> int:
        return 2

    deps = ChatPipelineDeps(
        rate_limiter=RateLimiter(max_requests=max_requests, window_ms=60_000),
        embedder=FakeEmbedder(),
        index_client=FakeIndex([_candidate(), _candidate()]),
        generator=ResponseGenerator(provider="mock", model_name="mock"),
        store=ConversationStore(session_factory),
        count_eligible=_count,
        clock_ms=lambda: NOW,
    )
    app = create_app(pipeline_deps=deps, session_factory=session_factory, init_schema=False)
    return {"app": app, "deps": deps}


def _parse_sse(body: str) -> List[Dict[str, Any]]:
    frames = [f for f in body.split("\n\n") if f.strip()]
    assert all(f.startswith("data: ") for f in frames)
    return [json.loads(f[len("data: ") :]) for f in frames]


def _chat_body(text: str = "office teamwork photos") -> Dict[str, Any]:
    return {"messages": [{"role": "user", "content": text}]}


async def _settle(built: Dict[str, Any]) -> None:
    await drain_pipelines(built["deps"])
    await built["deps"].store.drain()  # docstring: 后台写任务在引擎销毁前完成


@pytest.mark.asyncio
async def test_chat_streams_status_then_result(session_factory) -> None:
    built = _build(session_factory)
    transport = ASGITransport(app=built["app"])
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post(
            "/chat",
            json=_chat_body(),
            headers={"x-user-id": "alice", "x-trace-id": "trace-123"},
        )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["x-trace-id"] == "trace-123"
    assert resp.headers["X-RateLimit-Limit"] == "20"
    assert resp.headers["X-RateLimit-Remaining"] == "19"
    assert resp.headers["X-RateLimit-Reset"].endswith("Z")

    events = _parse_sse(resp.text)
    assert [e["stage"] for e in events] == ["status"] * 5 + ["result"]
    assert events[1]["label"] == "Searching through 2 assets..."
    assert len(events[-1]["items"]) == 2
    assert events[-1]["items"][0]["dam_id"] == "DAM-7"

    await _settle(built)
    roles = sorted(t["role"] for t in await built["deps"].store.list_history("alice"))
    assert roles == ["assistant", "user"]


@pytest.mark.asyncio
async def test_chat_without_identity_streams_unauthorized(session_factory) -> None:
    built = _build(session_factory)
    async with AsyncClient(transport=ASGITransport(app=built["app"]), base_url="http://test") as client:
        resp = await client.post("/chat", json=_chat_body())

    assert resp.status_code == 200  # docstring: 拒绝以终态 ERROR 事件表达
    assert "X-RateLimit-Limit" not in resp.headers
    events = _parse_sse(resp.text)
    assert events == [{"stage": "error", "code": "unauthorized", "detail": "Missing caller identity."}]
    await _settle(built)


@pytest.mark.asyncio
async def test_chat_rate_limited_after_window_exhausted(session_factory) -> None:
    built = _build(session_factory, max_requests=2)
    async with AsyncClient(transport=ASGITransport(app=built["app"]), base_url="http://test") as client:
        first = await client.post("/chat", json=_chat_body(), headers={"x-user-id": "bob"})
        second = await client.post("/chat", json=_chat_body(), headers={"x-user-id": "bob"})

    assert _parse_sse(first.text)[-1]["stage"] == "result"
    assert second.headers["X-RateLimit-Remaining"] == "0"
    last = _parse_sse(second.text)
    assert len(last) == 1
    assert last[0]["code"] == "rate_limited"
    assert last[0]["reset_at"] == second.headers["X-RateLimit-Reset"]
    await _settle(built)


@pytest.mark.asyncio
async def test_chat_with_no_user_turn_is_bad_request(session_factory) -> None:
    built = _build(session_factory)
    async with AsyncClient(transport=ASGITransport(app=built["app"]), base_url="http://test") as client:
        resp = await client.post(
            "/chat",
            json={"messages": [{"role": "assistant", "content": "hi"}]},
            headers={"x-user-id": "carol"},
        )
        invalid = await client.post("/chat", json={"messages": "nope"}, headers={"x-user-id": "carol"})

    assert _parse_sse(resp.text)[-1]["code"] == "bad_request"
    assert invalid.status_code == 422  # docstring: 请求体结构错误由 FastAPI 校验
    await _settle(built)


@pytest.mark.asyncio
async def test_history_roundtrip(session_factory) -> None:
    built = _build(session_factory)
    async with AsyncClient(transport=ASGITransport(app=built["app"]), base_url="http://test") as client:
        await client.post("/chat", json=_chat_body("warehouse logistics"), headers={"x-user-id": "dave"})
        await _settle(built)

        listed = await client.get("/history", headers={"x-user-id": "dave"})
        assert listed.status_code == 200
        payload = listed.json()
        assert payload["user_id"] == "dave"
        assert {m["role"] for m in payload["messages"]} == {"user", "assistant"}

        cleared = await client.delete("/history", headers={"x-user-id": "dave"})
        assert cleared.json() == {"user_id": "dave", "deleted": 2}

        missing = await client.get("/history")
        assert missing.status_code == 401
        assert missing.json()["error"]["code"] == "unauthorized"
