# playground/pipeline_gate/test_chat_pipeline_gate.py

"""
[职责] pipeline gate：验证 run_chat_pipeline 的阶段顺序、恰好一个终态事件、拒绝路径不触达外部依赖、落库行为。
[边界] embedder/index/generator 为内存替身；ConversationStore 使用临时 sqlite（conftest）。
[上游关系] services/chat_service.py 及其注入的协作者。
[下游关系] chat 路由只负责把 ProgressStream 编码为 SSE。
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, List, Optional, Sequence, Tuple

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asset_rag.backend.pipelines.base.context import PipelineContext
from asset_rag.backend.pipelines.generation.generator import StaticResponseLLM
from asset_rag.backend.pipelines.generation.pipeline import ResponseGenerator
from asset_rag.backend.pipelines.retrieval.types import Candidate
from asset_rag.backend.schemas.chat import ChatQueryRequest, ChatTurn, turns_from_pairs
from asset_rag.backend.schemas.progress import ErrorEvent, ResultEvent, StatusEvent
from asset_rag.backend.services.chat_service import (
    ChatPipelineDeps,
    PipelineTaskSet,
    drain_pipelines,
    run_chat_pipeline,
    start_chat_pipeline,
)
from asset_rag.backend.services.conversation_store import ConversationStore
from asset_rag.backend.services.progress import ProgressStream
from asset_rag.backend.services.rate_limit import RateLimiter
from asset_rag.backend.utils.errors import ExternalDependencyError


pytestmark = pytest.mark.pipeline_gate

NOW = 1_700_000_000_000.0


class FakeEmbedder:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: List[str] = []
        self.fail = fail

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise ExternalDependencyError(message="Failed to analyze the query.", detail={"stage": "embed"})
        return [0.1, 0.2, 0.3]


class FakeIndex:
    def __init__(self, candidates: Sequence[Candidate]) -> None:
        self.candidates = list(candidates)
        self.calls: List[dict] = []

    async def query(self, vector: List[float], *, top_k: int = 30, filter: Optional[dict] = None) -> List[Candidate]:
        self.calls.append({"top_k": top_k, "filter": filter})
        return self.candidates[:top_k]


def _candidate(similarity: float, acquired_at_ms: float) -> Candidate:
    aid = str(uuid.uuid4())
    return Candidate(
        asset_id=aid,
        description="Product flat lay on marble",
        similarity=similarity,
        acquired_at_ms=acquired_at_ms,
        metadata={"preview_path": f"previews/{aid}.jpg", "file_name": f"{aid}.jpg", "status": "approved"},
    )


def _deps(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    candidates: Sequence[Candidate] = (),
    generator: Any = None,
    embedder: Optional[FakeEmbedder] = None,
    limiter: Optional[RateLimiter] = None,
    count: Any = None,
) -> ChatPipelineDeps:
    async def _count() -> int:
        return 128

    return ChatPipelineDeps(
        rate_limiter=limiter or RateLimiter(max_requests=20, window_ms=60_000),
        embedder=embedder or FakeEmbedder(),
        index_client=FakeIndex(candidates),
        generator=generator or ResponseGenerator(provider="mock", model_name="mock"),
        store=ConversationStore(session_factory),
        count_eligible=count if count is not None else _count,
        clock_ms=lambda: NOW,
    )


def _request(text: str = "sunny product shots") -> ChatQueryRequest:
    return turns_from_pairs([("user", "hello"), ("assistant", "Hi!"), ("user", text)])


async def _run(deps: ChatPipelineDeps, *, user_id: Optional[str] = "user-1", request: Optional[ChatQueryRequest] = None) -> ProgressStream:
    stream = ProgressStream()
    ctx = PipelineContext.create(user_id=user_id)
    await run_chat_pipeline(ctx=ctx, request=request or _request(), stream=stream, deps=deps)
    await deps.store.drain()
    return stream


@pytest.mark.asyncio
async def test_happy_path_status_order_and_result(session_factory) -> None:
    cands = [_candidate(0.9, NOW - 1000.0), _candidate(0.4, NOW - 1000.0), _candidate(0.7, NOW)]
    deps = _deps(session_factory, candidates=cands)

    stream = await _run(deps)

    history = list(stream.history)
    labels = [e.label for e in history if isinstance(e, StatusEvent)]
    assert labels == [
        "Analyzing your query...",
        "Searching through 128 assets...",
        "Found 3 potential matches",
        "Ranking by relevance and recency...",
        "Generating response...",
    ]
    assert isinstance(history[-1], ResultEvent)
    assert sum(1 for e in history if not isinstance(e, StatusEvent)) == 1
    assert history[-1].items[0].id == cands[0].asset_id  # docstring: 排序后首位

    assert deps.embedder.calls == ["sunny product shots"]
    assert deps.index_client.calls == [{"top_k": 30, "filter": {"status": "approved"}}]

    turns = await deps.store.list_history("user-1")
    by_role = {t["role"]: t for t in turns}  # docstring: 后台写任务之间不保证顺序
    assert sorted(by_role) == ["assistant", "user"]
    assert by_role["user"]["content"] == "sunny product shots"
    assert len(by_role["assistant"]["assets"]) == 3


@pytest.mark.asyncio
async def test_empty_candidates_still_result(session_factory) -> None:
    deps = _deps(session_factory, candidates=[])

    stream = await _run(deps)

    terminal = stream.terminal_event
    assert isinstance(terminal, ResultEvent)
    assert terminal.items == []
    assert terminal.message.strip()
    assert "Found 0 potential matches" in [e.label for e in stream.history if isinstance(e, StatusEvent)]


@pytest.mark.asyncio
async def test_invalid_generation_output_yields_error_and_no_assistant_turn(session_factory) -> None:
    gen = ResponseGenerator(
        provider="mock",
        model_name="broken",
        llm=StaticResponseLLM(response_text='{"assistant_message": "ok", "assets": [{"id": "nope"}]}'),
    )
    deps = _deps(session_factory, candidates=[_candidate(0.5, NOW)], generator=gen)

    stream = await _run(deps)

    assert not any(isinstance(e, ResultEvent) for e in stream.history)
    terminal = stream.terminal_event
    assert isinstance(terminal, ErrorEvent)
    assert terminal.code == "generation.invalid_output"

    turns = await deps.store.list_history("user-1")
    assert [t["role"] for t in turns] == ["user"]  # docstring: 无 assistant 轮次


@pytest.mark.asyncio
async def test_missing_identity_rejected_before_any_call(session_factory) -> None:
    deps = _deps(session_factory)

    stream = await _run(deps, user_id=None)

    assert [e.stage for e in stream.history] == ["error"]
    assert stream.terminal_event.code == "unauthorized"
    assert deps.embedder.calls == []


@pytest.mark.asyncio
async def test_rate_limited_rejected_with_reset_at(session_factory) -> None:
    limiter = RateLimiter(max_requests=1, window_ms=60_000)
    deps = _deps(session_factory, limiter=limiter)

    stream = await _run(deps)

    terminal = stream.terminal_event
    assert isinstance(terminal, ErrorEvent)
    assert terminal.code == "rate_limited"
    assert terminal.reset_at
    assert deps.embedder.calls == []
    assert deps.index_client.calls == []
    assert await deps.store.list_history("user-1") == []


@pytest.mark.asyncio
async def test_no_user_turn_is_bad_request(session_factory) -> None:
    deps = _deps(session_factory)
    request = turns_from_pairs([("assistant", "How can I help?"), ("user", "   ")])

    stream = await _run(deps, request=request)

    assert stream.terminal_event.code == "bad_request"
    assert deps.embedder.calls == []


@pytest.mark.asyncio
async def test_count_failure_uses_generic_label(session_factory) -> None:
    async def _broken_count() -> int:
        raise RuntimeError("db offline")

    deps = _deps(session_factory, candidates=[_candidate(0.5, NOW)], count=_broken_count)

    stream = await _run(deps)

    labels = [e.label for e in stream.history if isinstance(e, StatusEvent)]
    assert labels[1] == "Searching the asset library..."
    assert isinstance(stream.terminal_event, ResultEvent)


@pytest.mark.asyncio
async def test_dependency_failure_maps_to_error_event(session_factory) -> None:
    deps = _deps(session_factory, embedder=FakeEmbedder(fail=True))

    stream = await _run(deps)

    assert [e.stage for e in stream.history] == ["status", "error"]
    assert stream.terminal_event.code == "external_dependency"
    assert deps.index_client.calls == []


@pytest.mark.asyncio
async def test_unexpected_exception_maps_to_internal_error(session_factory) -> None:
    class ExplodingGenerator:
        async def generate(self, user_query: str, ranked: Sequence[Candidate]) -> Any:
            raise KeyError("boom")

    deps = _deps(session_factory, generator=ExplodingGenerator())

    stream = await _run(deps)

    terminal = stream.terminal_event
    assert terminal.code == "internal_error"
    assert "boom" not in terminal.detail


@pytest.mark.asyncio
async def test_pipeline_survives_caller_detach(session_factory) -> None:
    deps = _deps(session_factory, candidates=[_candidate(0.6, NOW)])
    stream = ProgressStream()
    stream.detach()  # docstring: 调用方已断开

    start_chat_pipeline(ctx=PipelineContext.create(user_id="user-2"), request=_request(), stream=stream, deps=deps)
    await drain_pipelines(deps)
    await deps.store.drain()

    assert isinstance(stream.terminal_event, ResultEvent)
    turns = await deps.store.list_history("user-2")
    assert sorted(t["role"] for t in turns) == ["assistant", "user"]


@pytest.mark.asyncio
async def test_assistant_append_issued_before_result(session_factory) -> None:
    calls: List[Tuple[str, ...]] = []

    class RecordingStore(ConversationStore):
        def append(self, identity: str, turn: ChatTurn, *, request_id: Optional[str] = None) -> Any:
            calls.append(("append", turn.role))
            return super().append(identity, turn, request_id=request_id)

    class RecordingStream(ProgressStream):
        def emit_result(self, message: str, items: Any) -> Any:
            calls.append(("result",))
            return super().emit_result(message, items)

    deps = _deps(session_factory, candidates=[_candidate(0.8, NOW)])
    deps.store = RecordingStore(session_factory)
    stream = RecordingStream()

    await run_chat_pipeline(ctx=PipelineContext.create(user_id="user-3"), request=_request(), stream=stream, deps=deps)
    await deps.store.drain()

    assert calls == [("append", "user"), ("append", "assistant"), ("result",)]
    assert isinstance(stream.terminal_event, ResultEvent)


@pytest.mark.asyncio
async def test_store_failure_does_not_abort_request(session_factory) -> None:
    def _offline_factory() -> Any:
        raise RuntimeError("database unavailable")

    deps = _deps(session_factory, candidates=[_candidate(0.8, NOW)])
    deps.store = ConversationStore(_offline_factory)

    stream = await _run(deps)

    assert isinstance(stream.terminal_event, ResultEvent)
    assert not any(isinstance(e, ErrorEvent) for e in stream.history)
    assert deps.store.failures >= 1
    assert deps.store.pending_count == 0


@pytest.mark.asyncio
async def test_background_tasks_are_owned_per_deps(session_factory) -> None:
    release = asyncio.Event()

    class GatedGenerator:
        def __init__(self) -> None:
            self.inner = ResponseGenerator(provider="mock", model_name="mock")

        async def generate(self, user_query: str, ranked: Sequence[Candidate]) -> Any:
            await release.wait()
            return await self.inner.generate(user_query, ranked)

    deps_a = _deps(session_factory, candidates=[_candidate(0.6, NOW)], generator=GatedGenerator())
    deps_b = _deps(session_factory)
    assert isinstance(deps_a.tasks, PipelineTaskSet)
    assert deps_a.tasks is not deps_b.tasks

    stream = ProgressStream()
    task = start_chat_pipeline(ctx=PipelineContext.create(user_id="user-4"), request=_request(), stream=stream, deps=deps_a)

    assert len(deps_a.tasks) == 1
    assert len(deps_b.tasks) == 0
    await drain_pipelines(deps_b)  # docstring: 另一组 deps 的 drain 不等待 a 的任务
    assert not task.done()

    release.set()
    await drain_pipelines(deps_a)
    await deps_a.store.drain()

    assert len(deps_a.tasks) == 0
    assert isinstance(stream.terminal_event, ResultEvent)
