# src/asset_rag/backend/api/schemas_http/history.py

"""
[职责] History HTTP Schema：GET/DELETE /history 的响应结构。
[边界] 只做结构描述；历史读取与删除由 ConversationStore 完成。
[上游关系] routers/history.py。
[下游关系] 前端恢复会话 / 清空会话。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ._common import ChatMessageId


class HistoryItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: ChatMessageId = Field(...)
    role: Literal["user", "assistant"] = Field(...)
    content: str = Field(...)
    assets: Optional[List[Dict[str, Any]]] = Field(default=None)  # docstring: assistant 轮次的资产快照
    created_at: datetime = Field(...)


class HistoryResponse(BaseModel):
    """Conversation turns for one caller, oldest first."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(...)
    messages: List[HistoryItem] = Field(default_factory=list)


class HistoryClearResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(...)
    deleted: int = Field(..., ge=0)
