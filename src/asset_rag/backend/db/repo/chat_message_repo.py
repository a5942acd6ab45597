# src/asset_rag/backend/db/repo/chat_message_repo.py

"""
[职责] ChatMessageRepo：对话轮次表的最小数据访问层（追加、按身份读取历史、按身份清空）。
[边界] 不提交事务（由调用方 commit）；不做检索/生成；不跨身份读取。
[上游关系] ConversationStore 后台写入；history 路由读取与删除。
[下游关系] chat_message 表。
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.chat_message import ChatMessageModel


class ChatMessageRepo:
    """Chat message repository (async SQLAlchemy)."""

    def __init__(self, session: AsyncSession):
        self._session = session  # docstring: DB 会话（由 deps/store 注入）

    async def append(
        self,
        *,
        user_id: str,
        role: str,
        content: str,
        assets: Optional[Sequence[Any]] = None,
        request_id: Optional[str] = None,
    ) -> ChatMessageModel:
        """Insert one turn and flush to obtain its id."""
        if role not in {"user", "assistant"}:
            raise ValueError(f"invalid role: {role}")
        msg = ChatMessageModel(
            user_id=user_id,
            role=role,
            content=content,
            assets=list(assets) if assets is not None else None,
            request_id=request_id,
        )
        self._session.add(msg)
        await self._session.flush()
        return msg

    async def list_for_user(self, user_id: str, *, limit: Optional[int] = None) -> List[ChatMessageModel]:
        """Oldest first, matching the order the conversation happened in."""
        stmt = (
            select(ChatMessageModel)
            .where(ChatMessageModel.user_id == user_id)
            .order_by(ChatMessageModel.created_at.asc(), ChatMessageModel.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(int(limit))
        res = await self._session.scalars(stmt)
        return list(res.all())

    async def delete_for_user(self, user_id: str) -> int:
        """Delete every turn owned by user_id; returns the number of rows removed."""
        res = await self._session.execute(delete(ChatMessageModel).where(ChatMessageModel.user_id == user_id))
        await self._session.flush()
        return int(res.rowcount or 0)
