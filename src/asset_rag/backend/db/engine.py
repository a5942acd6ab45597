# src/asset_rag/backend/db/engine.py

"""
[职责] 数据库引擎与会话工厂：创建 AsyncEngine / AsyncSession 与默认 SessionLocal。
[边界] 不包含 ORM Model 定义；不包含业务事务编排（由 repo/service 负责）；不负责迁移。
[上游关系] config.py 提供 ASSET_RAG_DATABASE_URL；应用启动时调用 init_db。
[下游关系] api/deps.py、ConversationStore、repo 层依赖 AsyncSession；tests 使用 create_sessionmaker。
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .base import Base


def resolve_db_url(override: str | None = None) -> str:
    """
    Resolve database URL.

    Priority:
        1) explicit override
        2) env: ASSET_RAG_DATABASE_URL / DATABASE_URL
        3) settings: ASSET_RAG_DATABASE_URL (.env aware, repo-root/.Local/asset_rag.db by default)
    """
    if override:
        return override
    for key in ("ASSET_RAG_DATABASE_URL", "DATABASE_URL"):
        env_url = os.getenv(key, "").strip()
        if env_url:
            return env_url
    from asset_rag.config import settings

    return settings.ASSET_RAG_DATABASE_URL


def _ensure_sqlite_dir(db_url: str) -> None:
    url = make_url(db_url)
    if not url.drivername.startswith("sqlite"):
        return
    database = url.database or ""
    if not database or database == ":memory:":
        return
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)  # docstring: 本地 sqlite 目录兜底


def create_engine(*, url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """
    Create AsyncEngine (aiosqlite for local/tests, any async driver in deployment).
    """
    db_url = resolve_db_url(url)
    _ensure_sqlite_dir(db_url)
    db_echo = echo if echo is not None else (os.getenv("SQL_ECHO", "0") == "1")  # docstring: SQL 打印开关

    return create_async_engine(
        db_url,
        echo=db_echo,
        pool_pre_ping=True,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async sessionmaker."""  # docstring: expire_on_commit=False，commit 后仍可读取字段
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


# --- global singletons (app runtime) ---
ENGINE: AsyncEngine = create_engine()
SessionLocal: async_sessionmaker[AsyncSession] = create_sessionmaker(ENGINE)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Context manager for scripts and background writers; caller controls commit/rollback.
    """
    async with SessionLocal() as session:
        yield session


async def init_db(*, engine: AsyncEngine | None = None) -> None:
    """
    Initialize database schema (create_all). Local/MVP use; production schemas are migrated separately.
    """
    from . import models  # noqa: F401  # docstring: 强制注册 ORM 表

    eng = engine or ENGINE
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(*, engine: AsyncEngine | None = None) -> None:
    """Drop all tables (local/dev/tests only)."""
    from . import models  # noqa: F401

    eng = engine or ENGINE
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

