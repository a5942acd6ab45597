# playground/milvus_gate/test_milvus_integration_gate.py

"""
[职责] Milvus integration gate：验证 client/repo 与 SimilarityIndexClient 的最小闭环（需 Milvus 可用）。
[边界] 只做 “创建 collection → upsert → 带状态过滤检索 → 维度校验 → drop” 最小闭环；未配置环境时跳过。
[上游关系] 依赖 kb/schema.py 的 collection spec；依赖 Milvus 运行环境。
[下游关系] chat_service 依赖 SimilarityIndexClient 只返回 approved 资产。
"""

from __future__ import annotations

import os
import time
import uuid
from typing import List

import pytest

from asset_rag.backend.kb.schema import build_collection_spec


pytestmark = pytest.mark.milvus_gate


def _should_skip() -> bool:
    return not os.getenv("MILVUS_URI", "").strip()  # docstring: 让 gate tests 可在 CI/本地可控启用


def _vec(seed: float, dim: int = 4) -> List[float]:
    return [seed + i * 0.01 for i in range(dim)]


@pytest.mark.asyncio
async def test_milvus_gate_collection_lifecycle() -> None:
    if _should_skip():
        pytest.skip("Milvus env not configured. Set MILVUS_URI.")

    from asset_rag.backend.kb.client import MilvusClient
    from asset_rag.backend.kb.repo import MilvusRepo
    from asset_rag.backend.pipelines.retrieval.embed import verify_index_dimension
    from asset_rag.backend.pipelines.retrieval.vector import SimilarityIndexClient

    spec = build_collection_spec(name=f"asset_gate_{int(time.time())}", embed_dim=4, metric_type="COSINE")
    client = MilvusClient.from_env(force_reconnect=True)
    repo = MilvusRepo(client)

    await client.healthcheck()
    await client.create_collection(spec, drop_if_exists=True)
    try:
        approved_id = str(uuid.uuid4())
        pending_id = str(uuid.uuid4())
        await repo.upsert_embeddings(
            collection=spec.name,
            entities=[
                {
                    "asset_id": approved_id,
                    "embedding": _vec(0.5),
                    "status": "approved",
                    "llm_description": "Runner on a mountain trail",
                    "image_purchase_date": 1_700_000_000_000,
                    "preview_path": "previews/runner.jpg",
                },
                {
                    "asset_id": pending_id,
                    "embedding": _vec(0.5),
                    "status": "pending",
                    "llm_description": "Runner on a mountain trail (unreviewed)",
                    "image_purchase_date": 1_700_000_000_000,
                    "preview_path": "previews/runner_2.jpg",
                },
            ],
        )

        assert await client.get_vector_dim(spec.name) == 4
        verify_index_dimension(embed_dim=4, index_dim=await client.get_vector_dim(spec.name), collection=spec.name)

        index = SimilarityIndexClient(repo, collection=spec.name, metric_type="COSINE")
        cands = await index.query(_vec(0.5), top_k=5, filter={"status": "approved"})
        ids = [c.asset_id for c in cands]
        assert approved_id in ids
        assert pending_id not in ids  # docstring: 非 approved 资产不可见
        assert all(0.0 <= c.similarity <= 1.0 for c in cands)
    finally:
        await client.drop_collection(spec.name)
        client.disconnect()
