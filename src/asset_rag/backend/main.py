# src/asset_rag/backend/main.py

"""
[职责] FastAPI 应用装配：lifespan（建表/日志/索引维度校验/关闭时 drain）+ 单例协作者 + 路由注册。
[边界] 不包含业务逻辑；协作者可由调用方注入（测试/脚本），否则按 settings 构造。
[上游关系] uvicorn `asset_rag.backend.main:app` 或测试调用 create_app(...)。
[下游关系] app.state.{rate_limiter, conversation_store, pipeline_deps} 被 api/deps.py 读取。
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asset_rag.backend.api.errors import domain_error_handler
from asset_rag.backend.api.middleware import TraceContextMiddleware
from asset_rag.backend.api.routers.chat import router as chat_router
from asset_rag.backend.api.routers.health import router as health_router
from asset_rag.backend.api.routers.history import router as history_router
from asset_rag.backend.db.engine import ENGINE, SessionLocal, init_db
from asset_rag.backend.kb.client import MilvusClient
from asset_rag.backend.kb.repo import MilvusRepo
from asset_rag.backend.pipelines.generation.pipeline import ResponseGenerator
from asset_rag.backend.pipelines.retrieval.embed import QueryEmbedder, verify_index_dimension
from asset_rag.backend.pipelines.retrieval.vector import SimilarityIndexClient
from asset_rag.backend.services.chat_service import ChatPipelineDeps, build_eligible_counter, drain_pipelines
from asset_rag.backend.services.conversation_store import ConversationStore
from asset_rag.backend.services.rate_limit import RateLimiter
from asset_rag.backend.utils.errors import DomainError
from asset_rag.backend.utils.logging_ import configure_logging, get_logger, log_event
from asset_rag.config import Settings, settings as default_settings


logger = get_logger("main")


def build_pipeline_deps(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    milvus_repo: Optional[MilvusRepo] = None,
) -> ChatPipelineDeps:
    """
    [职责] 按 settings 构造生产协作者（限流器/embedder/Milvus 检索/生成器/对话存储）。
    [边界] 只构造对象，不建立网络连接（Milvus 连接在首次调用时建立）。
    """
    repo = milvus_repo or MilvusRepo(MilvusClient.from_env())
    return ChatPipelineDeps(
        rate_limiter=RateLimiter(
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_ms=settings.RATE_LIMIT_WINDOW_MS,
        ),
        embedder=QueryEmbedder.from_settings(settings),
        index_client=SimilarityIndexClient(
            repo,
            collection=settings.MILVUS_COLLECTION,
            metric_type=settings.MILVUS_METRIC_TYPE,
        ),
        generator=ResponseGenerator.from_settings(settings),
        store=ConversationStore(session_factory),
        count_eligible=build_eligible_counter(session_factory, status=settings.ELIGIBLE_STATUS),
        vector_top_k=settings.VECTOR_TOP_K,
        result_top_n=settings.RESULT_TOP_N,
        rank_alpha=settings.RANK_ALPHA,
        recency_window_ms=settings.recency_window_ms,
        eligible_status=settings.ELIGIBLE_STATUS,
    )


async def _verify_index_dimension(settings: Settings, milvus_repo: MilvusRepo) -> None:
    index_dim = await milvus_repo.client.get_vector_dim(settings.MILVUS_COLLECTION)
    verify_index_dimension(
        embed_dim=int(settings.EMBED_DIM),
        index_dim=int(index_dim),
        collection=settings.MILVUS_COLLECTION,
    )  # docstring: 维度不一致 -> ConfigurationError，服务拒绝启动


def create_app(
    *,
    settings: Optional[Settings] = None,
    pipeline_deps: Optional[ChatPipelineDeps] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    init_schema: bool = True,
) -> FastAPI:
    """
    [职责] 构造 FastAPI app；未注入的协作者按 settings 构造。
    [边界] 注入 pipeline_deps 时跳过索引维度校验（协作者由调用方负责）。
    """
    cfg = settings or default_settings
    factory = session_factory or SessionLocal
    injected = pipeline_deps is not None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(level=logging.getLevelName(str(cfg.LOG_LEVEL).upper()))
        if init_schema and session_factory is None:
            await init_db(engine=ENGINE)

        milvus_repo: Optional[MilvusRepo] = None
        if not injected:
            milvus_repo = MilvusRepo(MilvusClient.from_env())
            if cfg.VERIFY_INDEX_DIM_ON_STARTUP:
                await _verify_index_dimension(cfg, milvus_repo)

        deps = pipeline_deps or build_pipeline_deps(settings=cfg, session_factory=factory, milvus_repo=milvus_repo)
        app.state.pipeline_deps = deps
        app.state.conversation_store = deps.store
        log_event(
            logger,
            logging.INFO,
            "application started",
            fields={
                "collection": cfg.MILVUS_COLLECTION,
                "embed_provider": cfg.EMBED_PROVIDER,
                "llm_provider": cfg.LLM_PROVIDER,
                "injected_deps": injected,
            },
        )
        try:
            yield
        finally:
            await drain_pipelines(deps)
            await deps.store.drain()  # docstring: 等待后台落库完成
            if milvus_repo is not None:
                milvus_repo.client.disconnect()
            log_event(logger, logging.INFO, "application stopped")

    app = FastAPI(title="asset_rag", version="0.1.0", lifespan=lifespan)
    app.add_middleware(TraceContextMiddleware)
    app.add_exception_handler(DomainError, domain_error_handler)
    app.include_router(chat_router)
    app.include_router(history_router)
    app.include_router(health_router)
    app.state.session_factory = factory  # docstring: get_session 从这里开会话

    if injected:
        app.state.pipeline_deps = pipeline_deps  # docstring: 无 lifespan 的测试客户端也可直接使用
        app.state.conversation_store = pipeline_deps.store
    return app


app = create_app()
