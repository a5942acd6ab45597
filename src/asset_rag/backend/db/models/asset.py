# src/asset_rag/backend/db/models/asset.py

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base, TimestampMixin


class AssetModel(Base, TimestampMixin):
    """
    [职责] 资产主表：ingestion 侧写入的资产记录（审核状态 + 可展示元数据）。
    [边界] 本服务只读（统计可检索资产数量、调试回查）；向量与检索 payload 在 Milvus 中。
    [上游关系] 上传/描述生成/审核流程（外部协作者）写入。
    [下游关系] AssetRepo.count_by_status 为 "Searching through N assets..." 提供 N。
    """

    __tablename__ = "asset"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="资产ID（UUID字符串，= Milvus asset_id）",
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="pending",
        index=True,
        comment="审核状态（approved/pending/rejected）",
    )
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False, default="", comment="原图存储路径")
    preview_path: Mapped[str] = mapped_column(String(1024), nullable=False, default="", comment="预览图路径")
    dam_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, comment="DAM 系统 ID")
    file_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True, comment="原始文件名")
    url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True, comment="外部访问 URL")
    llm_description: Mapped[str] = mapped_column(Text, nullable=False, default="", comment="视觉模型描述")
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list, comment="标签")
    usage_rights: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, comment="使用权限")
    brand: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    collection: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image_purchase_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="采购时间（新鲜度依据）",
    )
