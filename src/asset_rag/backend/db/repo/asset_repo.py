# src/asset_rag/backend/db/repo/asset_repo.py

"""
[职责] AssetRepo：资产表只读访问（按状态计数、按 id 读取）。
[边界] 不写资产（ingestion 侧负责）。
[上游关系] chat_service 的计数阶段；调试脚本。
[下游关系] asset 表。
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.asset import AssetModel


class AssetRepo:
    """Asset repository (read side)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def count_by_status(self, status: str) -> int:
        stmt = select(func.count()).select_from(AssetModel).where(AssetModel.status == status)
        value = await self._session.scalar(stmt)
        return int(value or 0)

    async def get_by_id(self, asset_id: str) -> Optional[AssetModel]:
        return await self._session.get(AssetModel, asset_id)
