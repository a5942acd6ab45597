# src/asset_rag/backend/kb/repo.py

"""
[职责] Milvus 数据访问仓储：封装资产向量的 search（以及测试/脚本用的 upsert），作为向量侧唯一数据接口。
[边界] 不做分数归一化与 Candidate 映射（pipelines/retrieval/vector.py）；不做排序。
[上游关系] kb/client.py 提供 collection 句柄；kb/schema.py 定义字段契约。
[下游关系] SimilarityIndexClient 使用 search；milvus gate test 使用 upsert_embeddings 造数。
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Dict, List, Optional

from .client import MilvusClient
from .schema import ASSET_ID_FIELD, EMBEDDING_FIELD


class MilvusRepo:
    """
    Repository for Milvus vector storage operations.
    """

    def __init__(self, client: MilvusClient) -> None:
        self._client = client  # docstring: MilvusClient（连接与 collection 管理封装）

    @property
    def client(self) -> MilvusClient:
        return self._client

    async def upsert_embeddings(self, *, collection: str, entities: List[Dict[str, Any]]) -> None:
        """
        Upsert asset entities (asset_id, embedding, status, ...) and flush.
        """  # docstring: 仅用于 gate test / 本地造数；正式写入属于 ingestion 侧
        col = await self._client.get_collection(collection)
        await self._run(col.upsert, entities)
        await self._run(col.flush)

    async def search(
        self,
        *,
        collection: str,
        query_vectors: List[List[float]],
        top_k: int,
        expr: Optional[str] = None,
        output_fields: Optional[List[str]] = None,
        metric_type: Optional[str] = None,
        search_params: Optional[Dict[str, Any]] = None,
    ) -> List[List[Dict[str, Any]]]:
        """
        Vector search.

        Returns:
          list per query vector; each item is a dict:
            {"asset_id": str, "score": float | None, "payload": dict}
        """
        col = await self._client.get_collection(collection)

        fields = list(output_fields or [])
        if ASSET_ID_FIELD not in fields:
            fields.insert(0, ASSET_ID_FIELD)

        mt = str(metric_type or "COSINE").strip().upper()
        params = dict(search_params or {"ef": 128})
        raw = await self._run(
            col.search,
            data=query_vectors,
            anns_field=EMBEDDING_FIELD,
            param={"metric_type": mt, "params": params},
            limit=int(top_k),
            expr=expr,  # docstring: 过滤在索引侧执行（status == "approved"）
            output_fields=fields,
        )

        out: List[List[Dict[str, Any]]] = []
        for hits in raw:
            q_res: List[Dict[str, Any]] = []
            for h in hits:
                pk = getattr(h, "id", None)  # docstring: 主键（asset_id）
                score = getattr(h, "score", None)
                entity = getattr(h, "entity", None)
                payload: Dict[str, Any] = {}
                if entity is not None:
                    for f in fields:
                        payload[f] = entity.get(f)  # docstring: 缺失的动态字段返回 None
                q_res.append(
                    {
                        "asset_id": str(pk) if pk is not None else "",
                        "score": float(score) if score is not None else None,
                        "payload": payload,
                    }
                )
            out.append(q_res)
        return out

    @staticmethod
    async def _run(fn: Any, *args: Any, **kwargs: Any) -> Any:
        """
        Run a pymilvus call off the event loop; await the result if the client returned an awaitable.
        """  # docstring: 兼容 sync/async 两种 pymilvus 形态
        if inspect.iscoroutinefunction(fn):
            return await fn(*args, **kwargs)
        value = await asyncio.to_thread(fn, *args, **kwargs)
        if inspect.isawaitable(value):
            return await value
        return value
