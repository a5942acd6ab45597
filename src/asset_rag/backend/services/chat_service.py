# src/asset_rag/backend/services/chat_service.py

"""
[职责] chat_service：单次查询 pipeline 编排（限流 -> embedding -> 向量检索 -> 混合排序 -> 生成 -> 落库 -> 终态事件）。
[边界] 不处理 HTTP 语义；不直接调用底层 SDK；所有协作者由 ChatPipelineDeps 显式注入。
[上游关系] api/routers/chat.py 构造 PipelineContext / ProgressStream 后调用 start_chat_pipeline。
[下游关系] ProgressStream 收到有序 STATUS 事件与恰好一个 RESULT/ERROR 终态事件；ConversationStore 收到两次 append。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asset_rag.backend.db.repo.asset_repo import AssetRepo
from asset_rag.backend.pipelines.base.context import PipelineContext
from asset_rag.backend.pipelines.retrieval.ranking import now_ms, rank_candidates
from asset_rag.backend.pipelines.retrieval.types import Candidate
from asset_rag.backend.schemas.chat import ChatQueryRequest, ChatTurn
from asset_rag.backend.schemas.generation import GeneratedResponse
from asset_rag.backend.services.conversation_store import ConversationStore
from asset_rag.backend.services.progress import ProgressStream
from asset_rag.backend.services.rate_limit import RateLimiter, RateLimitInfo
from asset_rag.backend.utils.constants import (
    DEFAULT_ELIGIBLE_STATUS,
    DEFAULT_RANK_ALPHA,
    DEFAULT_RECENCY_WINDOW_MS,
    DEFAULT_RESULT_TOP_N,
    DEFAULT_VECTOR_TOP_K,
    STATUS_ANALYZING,
    STATUS_FOUND,
    STATUS_GENERATING,
    STATUS_RANKING,
    STATUS_SEARCHING,
    STATUS_SEARCHING_FALLBACK,
    TIMING_MS_KEY,
)
from asset_rag.backend.utils.errors import (
    BadRequestError,
    RejectionError,
    UnauthorizedError,
    coerce_domain_error,
)
from asset_rag.backend.utils.logging_ import get_logger, hash_text, log_event, truncate_text


logger = get_logger("services.chat")


class EmbedderLike(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class IndexClientLike(Protocol):
    async def query(
        self, vector: List[float], *, top_k: int = ..., filter: Optional[dict] = ...
    ) -> List[Candidate]: ...


class GeneratorLike(Protocol):
    async def generate(self, user_query: str, ranked: Sequence[Candidate]) -> GeneratedResponse: ...


EligibleCounter = Callable[[], Awaitable[int]]


def build_eligible_counter(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    status: str = DEFAULT_ELIGIBLE_STATUS,
) -> EligibleCounter:
    """Return a coroutine factory counting assets with the given status (for the search label)."""

    async def _count() -> int:
        async with session_factory() as session:
            return await AssetRepo(session).count_by_status(status)

    return _count


class PipelineTaskSet:
    """
    [职责] 持有后台 pipeline 任务的强引用（事件循环只保留弱引用），提供 drain() 供关闭/测试等待。
    [边界] 只跟踪，不取消；任务异常由 run_chat_pipeline 自行映射为 ERROR 事件。
    [上游关系] ChatPipelineDeps（每个 app 一份）。
    [下游关系] start_chat_pipeline / drain_pipelines。
    """

    def __init__(self) -> None:
        self._tasks: Set["asyncio.Task[None]"] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def add(self, task: "asyncio.Task[None]") -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


@dataclass
class ChatPipelineDeps:
    """
    [职责] pipeline 协作者与检索/排序参数的显式装配。
    [边界] 不持有请求级状态（tasks 只跟踪后台任务）；app 生命周期内单例，测试中可替换任意协作者。
    [上游关系] main.create_app / 测试。
    [下游关系] run_chat_pipeline。
    """

    rate_limiter: RateLimiter
    embedder: EmbedderLike
    index_client: IndexClientLike
    generator: GeneratorLike
    store: ConversationStore
    count_eligible: Optional[EligibleCounter] = None
    vector_top_k: int = DEFAULT_VECTOR_TOP_K
    result_top_n: int = DEFAULT_RESULT_TOP_N
    rank_alpha: float = DEFAULT_RANK_ALPHA
    recency_window_ms: float = DEFAULT_RECENCY_WINDOW_MS
    eligible_status: str = DEFAULT_ELIGIBLE_STATUS
    clock_ms: Callable[[], float] = field(default=now_ms)
    tasks: PipelineTaskSet = field(default_factory=PipelineTaskSet)


async def _searching_label(ctx: PipelineContext, deps: ChatPipelineDeps) -> str:
    """Eligible-count label; a failed or missing count degrades to the generic label."""
    if deps.count_eligible is None:
        return STATUS_SEARCHING_FALLBACK
    try:
        total = await deps.count_eligible()
    except Exception as exc:
        log_event(
            logger,
            logging.WARNING,
            "eligible asset count failed",
            context=ctx,
            fields={"cause": f"{exc.__class__.__name__}: {exc}"},
        )
        return STATUS_SEARCHING_FALLBACK
    return STATUS_SEARCHING.format(count=int(total))


def _emit_failure(ctx: PipelineContext, stream: ProgressStream, exc: BaseException) -> None:
    domain = coerce_domain_error(exc)
    level = logging.WARNING if isinstance(domain, RejectionError) else logging.ERROR
    log_event(
        logger,
        level,
        "chat pipeline failed",
        context=ctx,
        fields={
            "error_code": domain.error_code,
            "cause": f"{exc.__class__.__name__}: {exc}",
            "detail": domain.detail,
        },
        exc_info=None if isinstance(domain, RejectionError) else exc,
    )
    stream.emit_error(
        code=domain.error_code,
        detail=domain.message,
        reset_at=getattr(domain, "reset_at", None),
    )


async def run_chat_pipeline(
    *,
    ctx: PipelineContext,
    request: ChatQueryRequest,
    stream: ProgressStream,
    deps: ChatPipelineDeps,
    rate_info: Optional[RateLimitInfo] = None,
) -> None:
    """
    [职责] 执行单次查询 pipeline，并保证 stream 恰好收到一个终态事件。
    [边界] 不向调用方抛异常（全部映射为 ERROR 事件）；rate_info 已由路由层 check 时不再重复计数。
    [上游关系] start_chat_pipeline / 测试。
    [下游关系] ProgressStream / ConversationStore。
    """
    try:
        identity = ctx.user_id
        if not identity:
            raise UnauthorizedError(message="Missing caller identity.")

        ctx.stage = "rate_limit"
        info = rate_info if rate_info is not None else deps.rate_limiter.check(identity)
        deps.rate_limiter.enforce(info)

        text = request.latest_user_text()
        if text is None:
            raise BadRequestError(message="No user message found.")

        log_event(
            logger,
            logging.INFO,
            "chat pipeline started",
            context=ctx,
            fields={"query_preview": truncate_text(text, max_len=80), "query_hash": hash_text(text)},
        )
        deps.store.append(identity, ChatTurn(role="user", content=text), request_id=ctx.request_id)

        ctx.stage = "embed"
        stream.emit_status(STATUS_ANALYZING)
        with ctx.timing.stage("embed"):
            vector = await deps.embedder.embed(text)

        ctx.stage = "vector_search"
        stream.emit_status(await _searching_label(ctx, deps))
        with ctx.timing.stage("vector_search"):
            candidates = await deps.index_client.query(
                vector,
                top_k=deps.vector_top_k,
                filter={"status": deps.eligible_status},
            )
        stream.emit_status(STATUS_FOUND.format(count=len(candidates)))

        ctx.stage = "ranking"
        stream.emit_status(STATUS_RANKING)
        with ctx.timing.stage("ranking"):
            ranked = rank_candidates(
                candidates,
                now_ms=deps.clock_ms(),
                alpha=deps.rank_alpha,
                recency_window_ms=deps.recency_window_ms,
                top_n=deps.result_top_n,
            )

        ctx.stage = "generate"
        stream.emit_status(STATUS_GENERATING)
        with ctx.timing.stage("generate"):
            response = await deps.generator.generate(text, ranked)

        deps.store.append(
            identity,
            ChatTurn(role="assistant", content=response.assistant_message, assets=tuple(response.assets)),
            request_id=ctx.request_id,
        )  # docstring: assistant 轮次在 RESULT 之前发起
        stream.emit_result(response.assistant_message, response.assets)
        ctx.stage = "done"

        log_event(
            logger,
            logging.INFO,
            "chat pipeline completed",
            context=ctx,
            fields={
                "candidates": len(candidates),
                "ranked": len(ranked),
                "assets": len(response.assets),
                TIMING_MS_KEY: ctx.timing_ms(),
            },
        )
    except Exception as exc:  # docstring: 未知异常由 coerce_domain_error 降级为 internal_error
        _emit_failure(ctx, stream, exc)


def start_chat_pipeline(
    *,
    ctx: PipelineContext,
    request: ChatQueryRequest,
    stream: ProgressStream,
    deps: ChatPipelineDeps,
    rate_info: Optional[RateLimitInfo] = None,
) -> "asyncio.Task[None]":
    """Run the pipeline as its own task; a caller disconnect detaches the stream but never cancels it."""
    task = asyncio.get_running_loop().create_task(
        run_chat_pipeline(ctx=ctx, request=request, stream=stream, deps=deps, rate_info=rate_info)
    )
    deps.tasks.add(task)
    return task


async def drain_pipelines(deps: ChatPipelineDeps) -> None:
    """Wait for every in-flight pipeline task started with these deps (shutdown hook and tests)."""
    await deps.tasks.drain()
