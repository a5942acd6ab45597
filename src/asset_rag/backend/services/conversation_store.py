# src/asset_rag/backend/services/conversation_store.py

"""
[职责] Conversation Store：对话轮次的后台追加写入（fire-and-forget）与历史读取/清空。
[边界] append 立即返回，不阻塞进度流；写入失败只记录日志（PersistenceFault），绝不进入事件流；每次写入独立 session。
[上游关系] chat_service 在用户轮次已知时、生成成功后各调用一次 append；history 路由调用 list/clear。
[下游关系] db/repo/chat_message_repo.py -> chat_message 表。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from asset_rag.backend.db.repo.chat_message_repo import ChatMessageRepo
from asset_rag.backend.schemas.chat import ChatTurn
from asset_rag.backend.utils.logging_ import get_logger, log_event, truncate_text


logger = get_logger("services.conversation_store")


def _turn_assets_payload(turn: ChatTurn) -> Optional[List[Dict[str, Any]]]:
    if turn.assets is None:
        return None
    return [a.model_dump(mode="json") for a in turn.assets]


class ConversationStore:
    """
    [职责] 调度并跟踪后台写任务；提供 drain() 供关闭/测试等待。
    [边界] 任务间不保证顺序；单个任务失败不影响其他任务。
    [上游关系] main.create_app 构造单例；测试注入内存 sqlite 的 session 工厂。
    [下游关系] ChatMessageRepo。
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._pending: Set["asyncio.Task[bool]"] = set()
        self.failures = 0  # docstring: 累计写入失败次数（测试/健康观测）

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def append(self, identity: str, turn: ChatTurn, *, request_id: Optional[str] = None) -> "asyncio.Task[bool]":
        """
        [职责] 调度一次追加写入并立即返回任务句柄。
        [边界] 调用方不应 await 该任务来决定事件流走向。
        [上游关系] chat_service。
        [下游关系] _write。
        """
        task = asyncio.get_running_loop().create_task(self._write(identity, turn, request_id=request_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, identity: str, turn: ChatTurn, *, request_id: Optional[str]) -> bool:
        try:
            async with self._session_factory() as session:
                repo = ChatMessageRepo(session)
                await repo.append(
                    user_id=identity,
                    role=turn.role,
                    content=turn.content,
                    assets=_turn_assets_payload(turn),
                    request_id=request_id,
                )
                await session.commit()
            return True
        except Exception as exc:
            self.failures += 1
            log_event(
                logger,
                logging.ERROR,
                "conversation turn append failed",
                fields={
                    "user_id": identity,
                    "role": turn.role,
                    "request_id": request_id,
                    "content_preview": truncate_text(turn.content, max_len=60),
                    "cause": f"{exc.__class__.__name__}: {exc}",
                },
                exc_info=exc,
            )  # docstring: PersistenceFault 只记录
            return False

    async def drain(self) -> None:
        """Wait for every in-flight append (shutdown hook and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def list_history(self, identity: str) -> List[Dict[str, Any]]:
        async with self._session_factory() as session:
            rows = await ChatMessageRepo(session).list_for_user(identity)
            return [
                {
                    "id": r.id,
                    "role": r.role,
                    "content": r.content,
                    "assets": r.assets,
                    "created_at": r.created_at,
                }
                for r in rows
            ]

    async def clear_history(self, identity: str) -> int:
        async with self._session_factory() as session:
            deleted = await ChatMessageRepo(session).delete_for_user(identity)
            await session.commit()
        log_event(logger, logging.INFO, "conversation history cleared", fields={"user_id": identity, "deleted": deleted})
        return deleted
