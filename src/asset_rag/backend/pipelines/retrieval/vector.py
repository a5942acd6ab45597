# src/asset_rag/backend/pipelines/retrieval/vector.py

"""
[职责] Similarity Index Client：在 Milvus 中按向量检索已审核资产，并映射为统一 Candidate 结构。
[边界] 过滤条件下推到索引（status == approved）；仅做分数归一化与 payload 映射；不排序、不重试。
[上游关系] chat_service 传入 query 向量；依赖 kb/repo.py 与 kb/schema.py 的字段契约。
[下游关系] ranking.rank_candidates 消费 Candidate 列表；索引返回顺序不作为最终排序依据。
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, cast

from asset_rag.backend.kb.repo import MilvusRepo
from asset_rag.backend.kb.schema import (
    ACQUIRED_AT_FIELD,
    ASSET_ID_FIELD,
    DEFAULT_OUTPUT_FIELDS,
    DESCRIPTION_FIELD,
    STATUS_FIELD,
    build_filter_expr,
)
from asset_rag.backend.pipelines.retrieval.types import Candidate
from asset_rag.backend.utils.constants import DEFAULT_ELIGIBLE_STATUS, DEFAULT_VECTOR_TOP_K
from asset_rag.backend.utils.errors import ExternalDependencyError
from asset_rag.backend.utils.logging_ import get_logger, log_event


MetricType = Literal["IP", "L2", "COSINE"]  # docstring: 向量度量类型（与 Milvus metric 对齐）

logger = get_logger("pipelines.retrieval.vector")

_EPOCH_SECONDS_CUTOFF = 10_000_000_000  # docstring: 小于该值的数字时间戳按秒解释


def _normalize_metric_type(metric_type: Optional[str]) -> MetricType:
    mt = str(metric_type or "COSINE").strip().upper()
    if mt in {"IP", "L2", "COSINE"}:
        return cast(MetricType, mt)
    return cast(MetricType, "COSINE")  # docstring: 未知 metric 回退


def _normalize_vector_score(raw_score: Optional[float], metric_type: MetricType) -> float:
    """
    [职责] 将向量距离/相似度统一为 [0,1] 且“越大越好”的分数。
    [边界] 单调转换；不跨候选归一化；缺失或 NaN 视为 0。
    [上游关系] _hit_to_candidate 调用。
    [下游关系] Candidate.similarity 参与 combined 打分。
    """
    if raw_score is None:
        return 0.0
    s = float(raw_score)
    if math.isnan(s):
        return 0.0
    if metric_type == "L2":
        return 1.0 / (1.0 + max(0.0, s))  # docstring: 距离 -> 相似度
    return min(1.0, max(0.0, s))  # docstring: IP/COSINE 截断到 [0,1]


def coerce_timestamp_ms(value: Any) -> Optional[float]:
    """
    [职责] 将采购时间统一为 epoch 毫秒。
    [边界] 支持 epoch ms / epoch s / ISO-8601 字符串 / date / datetime；不可解析返回 None。
    [上游关系] _hit_to_candidate、db 侧资产回填。
    [下游关系] Candidate.acquired_at_ms。
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.timestamp() * 1000.0
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp() * 1000.0
    if isinstance(value, (int, float)):
        v = float(value)
        if not math.isfinite(v):
            return None
        return v * 1000.0 if abs(v) < _EPOCH_SECONDS_CUTOFF else v
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return coerce_timestamp_ms(float(s))  # docstring: 数字字符串
        except ValueError:
            pass
        try:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None
        return coerce_timestamp_ms(dt)
    return None


def _iso_date(ms: Optional[float]) -> Optional[str]:
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).date().isoformat()
    except (OverflowError, OSError, ValueError):
        return None


def _hit_to_candidate(hit: Mapping[str, Any], *, metric_type: MetricType) -> Optional[Candidate]:
    """
    [职责] 将 Milvus hit 映射为 Candidate。
    [边界] 缺失 asset_id 的 hit 丢弃；时间戳缺失保留为 None（ranker 按 now 计分），存在但不可解析记为 NaN（ranker 丢弃）。
    [上游关系] SimilarityIndexClient.query 调用。
    [下游关系] rank_candidates。
    """
    payload = dict(hit.get("payload") or {})
    asset_id = str(hit.get("asset_id") or payload.get(ASSET_ID_FIELD) or "").strip()
    if not asset_id:
        return None

    raw_acquired = payload.get(ACQUIRED_AT_FIELD)
    acquired_at_ms = coerce_timestamp_ms(raw_acquired)
    if acquired_at_ms is None and raw_acquired not in (None, ""):
        acquired_at_ms = float("nan")
    metadata: Dict[str, Any] = {
        k: v
        for k, v in payload.items()
        if k not in {ASSET_ID_FIELD, DESCRIPTION_FIELD, ACQUIRED_AT_FIELD} and v is not None
    }
    metadata[ACQUIRED_AT_FIELD] = _iso_date(acquired_at_ms)  # docstring: 模型侧可读日期

    return Candidate(
        asset_id=asset_id,
        description=str(payload.get(DESCRIPTION_FIELD) or ""),
        similarity=_normalize_vector_score(hit.get("score"), metric_type),
        acquired_at_ms=acquired_at_ms,
        metadata=metadata,
    )


class SimilarityIndexClient:
    """
    [职责] 以向量 + 过滤条件查询 Milvus，返回最多 top_k 个候选。
    [边界] 空结果是合法结果；传输/服务端错误映射为 ExternalDependencyError。
    [上游关系] chat_service。
    [下游关系] Hybrid Ranker。
    """

    def __init__(
        self,
        milvus_repo: MilvusRepo,
        *,
        collection: str,
        metric_type: Optional[str] = None,
        output_fields: Optional[List[str]] = None,
    ) -> None:
        self._repo = milvus_repo
        self.collection = str(collection).strip()
        self.metric_type = _normalize_metric_type(metric_type)
        self._output_fields = list(output_fields or DEFAULT_OUTPUT_FIELDS)

    async def query(
        self,
        vector: List[float],
        *,
        top_k: int = DEFAULT_VECTOR_TOP_K,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> List[Candidate]:
        if not vector or int(top_k) <= 0:
            return []
        filters = dict(filter) if filter is not None else {STATUS_FIELD: DEFAULT_ELIGIBLE_STATUS}
        expr = build_filter_expr(filters)

        try:
            results = await self._repo.search(
                collection=self.collection,
                query_vectors=[list(vector)],
                top_k=int(top_k),
                expr=expr,
                output_fields=self._output_fields,
                metric_type=self.metric_type,
            )
        except Exception as exc:
            raise ExternalDependencyError(
                message="Failed to search the asset library.",
                detail={"stage": "vector_search", "collection": self.collection},
                cause=exc,
            ) from exc

        hits = results[0] if results else []
        candidates: List[Candidate] = []
        for h in hits:
            cand = _hit_to_candidate(h, metric_type=self.metric_type)
            if cand is None:
                log_event(
                    logger,
                    logging.DEBUG,
                    "vector hit without asset_id skipped",
                    fields={"collection": self.collection},
                )
                continue
            candidates.append(cand)
        return candidates[: int(top_k)]
