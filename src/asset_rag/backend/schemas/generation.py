# src/asset_rag/backend/schemas/generation.py

"""
[职责] Generation 契约层：生成模型必须返回的固定结构（GeneratedResponse / AssetPick）。
[边界] 只做结构校验（类型/必填/禁止额外字段）；“是否引用了提供的候选”属于内容校验，在 postprocess 中完成。
[上游关系] pipelines/generation/postprocess.py 将模型 JSON 输出校验为本结构。
[下游关系] ResultEvent.items；ConversationStore 写入 assistant 轮次的 assets 快照。
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .ids import is_uuid_str


class AssetPick(BaseModel):
    """
    [职责] 单个推荐资产：候选 id + 模型生成的 label/reason + 从候选透传的定位字段。
    [边界] 不做强制转换（strict）；id 必须是 UUID 字符串；不接受额外字段。
    [上游关系] 生成模型输出。
    [下游关系] ResultEvent.items / chat_message.assets。
    """

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)

    id: str = Field(..., min_length=1)  # docstring: 候选资产 ID（必须来自本次候选集）
    dam_id: Optional[str] = Field(default=None)
    file_name: Optional[str] = Field(default=None)
    url: Optional[str] = Field(default=None)
    preview_path: str = Field(...)  # docstring: 预览图路径（必须与候选一致）
    label: str = Field(...)  # docstring: 简短标签
    reason: str = Field(...)  # docstring: 推荐理由

    @field_validator("id")
    @classmethod
    def _validate_id_uuid(cls, v: str) -> str:
        if not is_uuid_str(v):
            raise ValueError("asset id must be a UUID string")
        return v


class GeneratedResponse(BaseModel):
    """Validated generator output: conversational message plus ordered asset picks."""

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)

    assistant_message: str = Field(..., min_length=1)  # docstring: 面向用户的回复（不可为空）
    assets: List[AssetPick] = Field(default_factory=list)  # docstring: 有序推荐（可为空）

    @field_validator("assistant_message")
    @classmethod
    def _validate_message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("assistant_message must not be blank")
        return v
