# src/asset_rag/backend/api/schemas_http/chat.py

"""
[职责] Chat HTTP Schema：POST /chat 请求体（有序对话轮次）。
[边界] 只做 HTTP 层结构校验；“是否存在 user 轮次”由 pipeline 判定并以 ERROR 事件返回。
[上游关系] 前端提交完整对话。
[下游关系] routers/chat.py 转换为领域 ChatQueryRequest。
"""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

from asset_rag.backend.schemas.chat import ChatQueryRequest, ChatTurn


class ChatTurnIn(BaseModel):
    model_config = ConfigDict(extra="ignore")  # docstring: 前端可能附带渲染字段（assets 等），忽略

    role: Literal["user", "assistant"] = Field(...)
    content: str = Field(default="", max_length=8000)


class ChatRequest(BaseModel):
    """
    [职责] ChatRequest：/chat 请求体。
    [边界] messages 可为空（pipeline 以 bad_request 拒绝）；不携带身份（身份来自 x-user-id header）。
    """

    model_config = ConfigDict(extra="forbid")

    messages: List[ChatTurnIn] = Field(default_factory=list)

    def to_domain(self) -> ChatQueryRequest:
        return ChatQueryRequest(messages=tuple(ChatTurn(role=m.role, content=m.content) for m in self.messages))
