# src/asset_rag/backend/pipelines/retrieval/ranking.py

"""
[职责] Hybrid Ranker：按 combined = alpha*similarity + (1-alpha)*recency 对候选重排并截断 top_n。
[边界] 纯函数（now_ms 由调用方注入）；不做 I/O；时间戳缺失按 now 计分（recency=1）；时间戳非法的候选被丢弃并记日志，不上抛。
[上游关系] SimilarityIndexClient.query 产出的 Candidate 列表（similarity 已在 [0,1]）。
[下游关系] ResponseGenerator 只能看到并引用本模块输出的候选。
"""

from __future__ import annotations

import logging
import math
import time
from typing import List, Optional, Sequence, Set

from asset_rag.backend.pipelines.retrieval.types import Candidate
from asset_rag.backend.utils.constants import (
    DEFAULT_RANK_ALPHA,
    DEFAULT_RECENCY_WINDOW_MS,
    DEFAULT_RESULT_TOP_N,
)
from asset_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("pipelines.retrieval.ranking")


def now_ms() -> float:
    """Wall-clock epoch milliseconds."""
    return time.time() * 1000.0


def recency_score(acquired_at_ms: float, *, now: float, window_ms: float = DEFAULT_RECENCY_WINDOW_MS) -> float:
    """
    [职责] 线性新鲜度：age=0 -> 1，age>=window -> 0。
    [边界] 未来时间（age<0）截断为 1；结果恒在 [0,1]。
    [上游关系] rank_candidates。
    [下游关系] Candidate.recency_score。
    """
    age = float(now) - float(acquired_at_ms)
    return min(1.0, max(0.0, 1.0 - age / float(window_ms)))


def combined_score(similarity: float, recency: float, *, alpha: float = DEFAULT_RANK_ALPHA) -> float:
    return float(alpha) * float(similarity) + (1.0 - float(alpha)) * float(recency)


def _is_usable_timestamp(value: Optional[float]) -> bool:
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return math.isfinite(float(value))


def rank_candidates(
    candidates: Sequence[Candidate],
    *,
    now_ms: float,
    alpha: float = DEFAULT_RANK_ALPHA,
    recency_window_ms: float = DEFAULT_RECENCY_WINDOW_MS,
    top_n: int = DEFAULT_RESULT_TOP_N,
) -> List[Candidate]:
    """
    [职责] 计算 recency/combined 分数，按 combined 稳定降序排序（同分保持输入顺序），截断到 top_n。
    [边界] 同一 asset_id 只保留首次出现；同样输入 + 同样 now_ms 输出完全一致。
    [上游关系] chat_service 在 "Ranking by relevance and recency..." 阶段调用。
    [下游关系] ResponseGenerator.generate。
    """
    if not 0.0 <= float(alpha) <= 1.0:
        raise ValueError("alpha must be within [0, 1]")
    if float(recency_window_ms) <= 0:
        raise ValueError("recency_window_ms must be > 0")
    if int(top_n) <= 0:
        return []

    scored: List[Candidate] = []
    seen: Set[str] = set()
    dropped = 0
    for cand in candidates:
        if cand.asset_id in seen:
            continue  # docstring: 去重保留首次出现
        seen.add(cand.asset_id)

        sim = float(cand.similarity) if cand.similarity is not None else float("nan")
        acquired = now_ms if cand.acquired_at_ms is None else cand.acquired_at_ms  # docstring: 缺失时间戳视为刚入库
        if not _is_usable_timestamp(acquired) or not math.isfinite(sim):
            dropped += 1
            log_event(
                logger,
                logging.WARNING,
                "candidate dropped: unusable timestamp or similarity",
                fields={"asset_id": cand.asset_id, "acquired_at_ms": repr(cand.acquired_at_ms)},
            )  # docstring: RankingDefect 只记录，不上抛
            continue

        sim = min(1.0, max(0.0, sim))
        rec = recency_score(float(acquired), now=now_ms, window_ms=recency_window_ms)
        scored.append(cand.with_scores(recency_score=rec, combined_score=combined_score(sim, rec, alpha=alpha)))

    ordered = sorted(scored, key=lambda c: -float(c.combined_score or 0.0))  # docstring: sorted 稳定，同分保持输入顺序
    if dropped:
        log_event(
            logger,
            logging.INFO,
            "ranking completed with dropped candidates",
            fields={"input": len(candidates), "dropped": dropped, "kept": len(ordered)},
        )
    return ordered[: int(top_n)]
