# src/asset_rag/backend/schemas/chat.py

"""
[职责] Chat 契约层：对话轮次（ChatTurn）与查询请求（ChatQueryRequest），并提供“最新用户轮次”提取。
[边界] 仅表达结构；不做身份校验、不触发检索；多轮上下文只取最后一条 user 轮次。
[上游关系] api/routers/chat.py 解析请求体；conversation_store 从 DB 还原历史轮次。
[下游关系] services/chat_service.py 取 latest_user_text() 作为检索查询。
"""

from __future__ import annotations

from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .generation import AssetPick


ChatRole = Literal["user", "assistant"]  # docstring: 对话角色


class ChatTurn(BaseModel):
    """
    [职责] 单个对话轮次（role + content；assistant 轮次可附带推荐资产）。
    [边界] 不可变；不携带 id/时间戳（由持久化层生成）。
    [上游关系] HTTP 请求体 / ResponseGenerator 输出。
    [下游关系] ConversationStore.append。
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    role: ChatRole = Field(...)
    content: str = Field(default="")  # docstring: 轮次文本（可为空串，由 pipeline 判断是否可用）
    assets: Optional[Tuple[AssetPick, ...]] = Field(default=None)  # docstring: assistant 推荐资产快照


class ChatQueryRequest(BaseModel):
    """Ordered conversation sent by the caller; only the latest user turn drives retrieval."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    messages: Tuple[ChatTurn, ...] = Field(default_factory=tuple)

    def latest_user_turn(self) -> Optional[ChatTurn]:
        for turn in reversed(self.messages):
            if turn.role == "user":
                return turn  # docstring: 最后一条 user 轮次
        return None

    def latest_user_text(self) -> Optional[str]:
        """Return the stripped text of the latest user turn, or None when it is absent or blank."""
        turn = self.latest_user_turn()
        if turn is None:
            return None
        text = turn.content.strip()
        return text or None  # docstring: 空白输入视为无 user 轮次


def turns_from_pairs(pairs: List[Tuple[str, str]]) -> ChatQueryRequest:
    """Convenience constructor used by scripts and tests: [(role, content), ...]."""
    return ChatQueryRequest(messages=tuple(ChatTurn(role=r, content=c) for r, c in pairs))  # type: ignore[arg-type]
