# src/asset_rag/backend/api/deps.py

"""
[职责] API 依赖装配：session、trace_context、调用方身份，以及 app.state 上的单例协作者。
[边界] 不做业务逻辑；不提交事务；不在此处构造 provider（由 main.create_app 负责）。
[上游关系] FastAPI 路由层通过 Depends 注入。
[下游关系] routers 获取 AsyncSession / ConversationStore / ChatPipelineDeps / MilvusRepo。
"""

from __future__ import annotations

from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from asset_rag.backend.kb.client import MilvusClient
from asset_rag.backend.kb.repo import MilvusRepo
from asset_rag.backend.schemas.audit import TraceContext
from asset_rag.backend.schemas.ids import UUIDStr, new_uuid
from asset_rag.backend.services.chat_service import ChatPipelineDeps
from asset_rag.backend.services.conversation_store import ConversationStore
from asset_rag.backend.utils.constants import USER_ID_HEADER


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """One session per request from the app's session factory; the caller owns commit/rollback."""
    async with request.app.state.session_factory() as session:
        yield session


def get_trace_context(request: Request) -> TraceContext:
    """
    [职责] 获取或创建 TraceContext（优先使用 middleware 注入）。
    [边界] 不写入日志；不校验 UUID 格式。
    """
    existing = getattr(request.state, "trace_context", None)
    if isinstance(existing, TraceContext):
        return existing

    trace_id = str(getattr(request.state, "trace_id", "") or "").strip() or str(new_uuid())
    request_id = str(getattr(request.state, "request_id", "") or "").strip() or str(new_uuid())
    ctx = TraceContext(trace_id=UUIDStr(trace_id), request_id=UUIDStr(request_id))
    request.state.trace_context = ctx  # docstring: 写回 state 以复用
    request.state.trace_id = trace_id
    request.state.request_id = request_id
    return ctx


def get_user_id(request: Request) -> Optional[str]:
    """Caller identity from the x-user-id header; None when missing or blank."""
    raw = str(request.headers.get(USER_ID_HEADER) or "").strip()
    return raw or None


def get_milvus_repo() -> MilvusRepo:
    client = MilvusClient.from_env()  # docstring: 复用进程内连接
    return MilvusRepo(client)


def get_conversation_store(request: Request) -> ConversationStore:
    return request.app.state.conversation_store


def get_pipeline_deps(request: Request) -> ChatPipelineDeps:
    return request.app.state.pipeline_deps
