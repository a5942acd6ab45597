# src/asset_rag/backend/db/models/chat_message.py

from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, TimestampMixin


class ChatMessageModel(Base, TimestampMixin):
    """
    [职责] 对话轮次持久化：每个 user/assistant 轮次一行，按调用方身份归属。
    [边界] 只追加；不做多轮上下文拼接；assistant 行的 assets 为推荐结果快照。
    [上游关系] ConversationStore.append（后台写入，失败只记日志）。
    [下游关系] GET/DELETE /history。
    """

    __tablename__ = "chat_message"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="消息ID（UUID字符串）",
    )
    user_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
        comment="调用方身份（x-user-id）",
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False, comment="user / assistant")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="轮次文本")
    assets: Mapped[Optional[List[dict]]] = mapped_column(
        JSON,
        nullable=True,
        comment="assistant 推荐资产快照（JSON list）",
    )
    request_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, comment="请求ID（排障用）")
