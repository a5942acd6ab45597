# src/asset_rag/backend/db/repo/__init__.py

"""
[职责] db.repo 聚合导出：集中暴露仓储对象，供 services/api 调用。
[边界] 仅做导入与 __all__ 暴露。
[上游关系] asset_repo / chat_message_repo。
[下游关系] services、api/deps、gate tests。
"""

from __future__ import annotations

from .asset_repo import AssetRepo
from .chat_message_repo import ChatMessageRepo

__all__ = [
    "AssetRepo",
    "ChatMessageRepo",
]
