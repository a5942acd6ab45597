# src/asset_rag/backend/schemas/ids.py

"""
[职责] ID 契约层：统一 UUID 字符串类型别名与生成/校验工具。
[边界] 不依赖 ORM；不包含业务字段。
[上游关系] 无（纯工具层）。
[下游关系] schemas/db/pipelines 在创建与传递实体引用时使用。
"""

from __future__ import annotations

from typing import NewType
from uuid import UUID, uuid4


UUIDStr = NewType("UUIDStr", str)  # docstring: 统一 UUID 字符串类型（运行时仍为 str）

AssetId = UUIDStr  # docstring: 资产 ID（向量索引主键 / asset.id）
ChatMessageId = UUIDStr  # docstring: chat_message.id


def new_uuid() -> UUIDStr:
    """Generate UUID v4 as string."""
    return UUIDStr(str(uuid4()))


def is_uuid_str(value: str) -> bool:
    """Return True if value parses as UUID string."""
    try:
        UUID(str(value))
        return True
    except (TypeError, ValueError):
        return False
