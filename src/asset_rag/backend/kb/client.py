# src/asset_rag/backend/kb/client.py

"""
[职责] Milvus 连接封装：基于 pymilvus ORM API 管理连接 alias、collection 句柄、建表/索引与维度读取。
[边界] 不做向量检索结果映射（kb/repo.py）；不做业务过滤（kb/schema.py）；阻塞调用统一转到线程执行。
[上游关系] api/deps.py、main.py lifespan、scripts/init_milvus.py 通过 from_env() 构造。
[下游关系] MilvusRepo 使用 get_collection；启动时用 get_vector_dim 做维度一致性检查。
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, Optional

from pymilvus import (
    Collection,
    CollectionSchema,
    DataType,
    FieldSchema,
    connections,
    utility,
)

from .schema import (
    ACQUIRED_AT_FIELD,
    ASSET_ID_FIELD,
    DESCRIPTION_FIELD,
    EMBEDDING_FIELD,
    STATUS_FIELD,
    VARCHAR_MAX_LEN,
    CollectionSpec,
)


DEFAULT_ALIAS = "asset_rag"


class MilvusClient:
    """
    [职责] 单 alias 的 Milvus 连接与 collection 管理。
    [边界] 句柄缓存只在进程内；不做重试。
    [上游关系] from_env() / 显式 uri。
    [下游关系] MilvusRepo、health router、启动检查。
    """

    def __init__(self, *, uri: str, token: Optional[str] = None, alias: str = DEFAULT_ALIAS) -> None:
        self.uri = uri
        self.alias = alias
        self._token = token
        self._collections: Dict[str, Collection] = {}  # docstring: collection 句柄缓存
        self._connected = False

    @classmethod
    def from_env(cls, *, force_reconnect: bool = False) -> "MilvusClient":
        """Build a client from MILVUS_URI/MILVUS_TOKEN (falls back to settings defaults)."""
        from asset_rag.config import settings

        uri = os.getenv("MILVUS_URI", "").strip() or settings.MILVUS_URI
        token = os.getenv("MILVUS_TOKEN", "").strip() or settings.MILVUS_TOKEN
        client = cls(uri=uri, token=token or None)
        if force_reconnect:
            client.disconnect()
        return client

    def _ensure_connected(self) -> None:
        if self._connected and connections.has_connection(self.alias):
            return
        kwargs: Dict[str, Any] = {"alias": self.alias, "uri": self.uri}
        if self._token:
            kwargs["token"] = self._token
        connections.connect(**kwargs)
        self._connected = True

    def disconnect(self) -> None:
        if connections.has_connection(self.alias):
            connections.disconnect(self.alias)
        self._connected = False
        self._collections.clear()

    async def healthcheck(self) -> None:
        """Raise if the server is unreachable."""

        def _ping() -> None:
            self._ensure_connected()
            utility.get_server_version(using=self.alias)

        await asyncio.to_thread(_ping)

    async def has_collection(self, name: str) -> bool:
        def _has() -> bool:
            self._ensure_connected()
            return bool(utility.has_collection(name, using=self.alias))

        return await asyncio.to_thread(_has)

    async def get_collection(self, name: str) -> Collection:
        """
        [职责] 获取（并 load）collection 句柄。
        [边界] collection 不存在时由 pymilvus 抛错；调用方负责映射为依赖故障。
        [上游关系] MilvusRepo.search。
        [下游关系] Collection.search。
        """
        cached = self._collections.get(name)
        if cached is not None:
            return cached

        def _open() -> Collection:
            self._ensure_connected()
            col = Collection(name, using=self.alias)
            col.load()  # docstring: load 后才可 search
            return col

        col = await asyncio.to_thread(_open)
        self._collections[name] = col
        return col

    async def get_vector_dim(self, name: str, *, field_name: str = EMBEDDING_FIELD) -> int:
        """Read the declared dimension of the vector field from the collection schema."""

        def _dim() -> int:
            self._ensure_connected()
            col = Collection(name, using=self.alias)
            for f in col.schema.fields:
                if f.name == field_name:
                    params = getattr(f, "params", None) or {}
                    return int(params.get("dim", 0))
            raise ValueError(f"vector field not found: {name}.{field_name}")

        return await asyncio.to_thread(_dim)

    async def create_collection(self, spec: CollectionSpec, *, drop_if_exists: bool = False) -> None:
        """
        [职责] 按 CollectionSpec 创建 collection、建立向量索引并 load（幂等）。
        [边界] 已存在且不 drop 时不修改结构。
        [上游关系] scripts/init_milvus.py、milvus gate tests。
        [下游关系] ingestion 侧写入；本服务检索。
        """

        def _create() -> None:
            self._ensure_connected()
            if utility.has_collection(spec.name, using=self.alias):
                if not drop_if_exists:
                    return
                utility.drop_collection(spec.name, using=self.alias)
                self._collections.pop(spec.name, None)

            fields = [
                FieldSchema(ASSET_ID_FIELD, DataType.VARCHAR, is_primary=True, max_length=64),
                FieldSchema(EMBEDDING_FIELD, DataType.FLOAT_VECTOR, dim=int(spec.embed_dim)),
                FieldSchema(STATUS_FIELD, DataType.VARCHAR, max_length=32),
                FieldSchema(DESCRIPTION_FIELD, DataType.VARCHAR, max_length=VARCHAR_MAX_LEN),
                FieldSchema(ACQUIRED_AT_FIELD, DataType.INT64),
            ]
            schema = CollectionSchema(fields, description=spec.description, enable_dynamic_field=True)
            col = Collection(spec.name, schema=schema, using=self.alias)
            col.create_index(
                EMBEDDING_FIELD,
                {
                    "index_type": spec.index_type,
                    "metric_type": spec.metric_type,
                    "params": dict(spec.index_params),
                },
            )
            col.load()

        await asyncio.to_thread(_create)

    async def drop_collection(self, name: str) -> None:
        def _drop() -> None:
            self._ensure_connected()
            if utility.has_collection(name, using=self.alias):
                utility.drop_collection(name, using=self.alias)

        await asyncio.to_thread(_drop)
        self._collections.pop(name, None)

