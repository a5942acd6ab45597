# src/asset_rag/backend/kb/schema.py

"""
[职责] Milvus 资产 collection 字段契约：字段名常量、collection spec 与过滤表达式构造。
[边界] 不连接 Milvus；不执行检索；只产出纯数据结构与表达式字符串。
[上游关系] 由 ingestion 侧写入的 collection 必须遵守本契约（asset_id 主键 + embedding + status + 元数据）。
[下游关系] kb/client.py 建表与维度读取；kb/repo.py 检索；pipelines/retrieval/vector.py 映射 payload。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, List, Literal, Mapping, Optional


MetricType = Literal["IP", "L2", "COSINE"]
IndexType = Literal["HNSW", "IVF_FLAT", "AUTOINDEX"]

ASSET_ID_FIELD = "asset_id"  # docstring: 主键（VARCHAR，= asset.id）
EMBEDDING_FIELD = "embedding"  # docstring: 描述文本向量
STATUS_FIELD = "status"  # docstring: 审核状态（approved/pending/...）
DESCRIPTION_FIELD = "llm_description"  # docstring: 视觉模型生成的描述
ACQUIRED_AT_FIELD = "image_purchase_date"  # docstring: 采购时间（epoch ms，新鲜度依据）

METADATA_FIELDS = (
    "dam_id",
    "file_name",
    "url",
    "preview_path",
    "tags",
    "usage_rights",
    "brand",
    "collection",
    "partner",
    "client",
    "campaign",
    "location",
    "region_representation",
    "license_type_usage",
    "license_type_subscription",
    "image_capture_date",
)  # docstring: 透传给生成模型的资产元数据字段

DEFAULT_OUTPUT_FIELDS: List[str] = [
    ASSET_ID_FIELD,
    STATUS_FIELD,
    DESCRIPTION_FIELD,
    ACQUIRED_AT_FIELD,
    *METADATA_FIELDS,
]

VARCHAR_MAX_LEN = 4096


@dataclass(frozen=True)
class CollectionSpec:
    """Collection layout used by scripts/init_milvus.py and the startup dimension check."""

    name: str
    embed_dim: int
    metric_type: MetricType = "COSINE"
    index_type: IndexType = "HNSW"
    description: str = "Brand asset description embeddings"
    index_params: Mapping[str, Any] = field(default_factory=lambda: {"M": 16, "efConstruction": 200})


def build_collection_spec(
    *,
    name: str,
    embed_dim: int,
    metric_type: str = "COSINE",
    index_type: str = "HNSW",
    description: Optional[str] = None,
) -> CollectionSpec:
    """
    [职责] 构造并校验 CollectionSpec。
    [边界] 非法参数直接抛 ValueError，不做替换。
    [上游关系] scripts/init_milvus.py、gate tests。
    [下游关系] MilvusClient.create_collection。
    """
    n = str(name or "").strip()
    if not n:
        raise ValueError("collection name is required")
    dim = int(embed_dim)
    if dim <= 0:
        raise ValueError("embed_dim must be > 0")
    mt = str(metric_type).strip().upper()
    if mt not in {"IP", "L2", "COSINE"}:
        raise ValueError(f"unsupported metric_type: {metric_type}")
    it = str(index_type).strip().upper()
    if it not in {"HNSW", "IVF_FLAT", "AUTOINDEX"}:
        raise ValueError(f"unsupported index_type: {index_type}")
    params = {"M": 16, "efConstruction": 200} if it == "HNSW" else ({"nlist": 1024} if it == "IVF_FLAT" else {})
    return CollectionSpec(
        name=n,
        embed_dim=dim,
        metric_type=mt,  # type: ignore[arg-type]
        index_type=it,  # type: ignore[arg-type]
        description=description or "Brand asset description embeddings",
        index_params=params,
    )


def _quote(value: Any) -> str:
    """Render a scalar as a Milvus boolean-expression literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(str(value))  # docstring: 双引号 + 转义


def build_filter_expr(filters: Optional[Mapping[str, Any]]) -> Optional[str]:
    """
    [职责] 将等值过滤 {field: value | [values]} 转为 Milvus 表达式（AND 连接）。
    [边界] 只支持等值与 in 列表；字段名必须是合法标识符；空过滤返回 None。
    [上游关系] pipelines/retrieval/vector.py（默认 {"status": "approved"}）。
    [下游关系] MilvusRepo.search(expr=...)，过滤在索引侧执行。
    """
    if not filters:
        return None
    clauses: List[str] = []
    for key, value in filters.items():
        name = str(key).strip()
        if not name.isidentifier():
            raise ValueError(f"invalid filter field: {key!r}")
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            items = ", ".join(_quote(v) for v in value)
            clauses.append(f"{name} in [{items}]")
        else:
            clauses.append(f"{name} == {_quote(value)}")
    return " and ".join(clauses) if clauses else None
