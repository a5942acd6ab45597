# playground/conftest.py

"""
[职责] playground 公共 fixtures：临时 sqlite 引擎、session 工厂与单个 AsyncSession。
[边界] 每个测试独立建表、独立销毁；不触碰默认本地库文件（tmp_path）。
[上游关系] backend/db/engine.py、backend/db/models。
[下游关系] sql_gate / pipeline_gate / fastapi_gate。
"""

from __future__ import annotations

from typing import AsyncIterator

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from asset_rag.backend.db.engine import create_sessionmaker, init_db


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    db_file = tmp_path / "playground.db"  # docstring: 每个测试独立 sqlite 文件（后台写任务各用独立连接）
    eng = create_async_engine(f"sqlite+aiosqlite:///{db_file}")
    await init_db(engine=eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as s:
        yield s
