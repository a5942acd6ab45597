# playground/ranking_gate/test_ranking_gate.py

"""
[职责] ranking gate：验证混合打分（similarity + recency）的排序、边界与确定性。
[边界] 纯函数测试；不连接 Milvus、不调用模型。
[上游关系] pipelines/retrieval/ranking.py、pipelines/retrieval/types.py。
[下游关系] chat_service 依赖其输出顺序交给生成模型。
"""

from __future__ import annotations

import math
import uuid
from typing import List, Optional

import pytest

from asset_rag.backend.pipelines.retrieval.ranking import combined_score, rank_candidates, recency_score
from asset_rag.backend.pipelines.retrieval.types import Candidate


pytestmark = pytest.mark.ranking_gate

NOW = 1_700_000_000_000.0
YEAR_MS = 365 * 24 * 60 * 60 * 1000.0
WINDOW = 3 * YEAR_MS


def _cand(similarity: float, acquired_at_ms: Optional[float], asset_id: Optional[str] = None) -> Candidate:
    return Candidate(
        asset_id=asset_id or str(uuid.uuid4()),
        description="red sneaker on white background",
        similarity=similarity,
        acquired_at_ms=acquired_at_ms,
        metadata={"preview_path": "previews/x.jpg"},
    )


def test_recency_edges() -> None:
    assert recency_score(NOW, now=NOW, window_ms=WINDOW) == 1.0  # docstring: age=0
    assert recency_score(NOW - WINDOW, now=NOW, window_ms=WINDOW) == 0.0  # docstring: age=window
    assert recency_score(NOW - 10 * WINDOW, now=NOW, window_ms=WINDOW) == 0.0
    assert recency_score(NOW + YEAR_MS, now=NOW, window_ms=WINDOW) == 1.0  # docstring: 未来时间截断
    assert recency_score(NOW - WINDOW / 2, now=NOW, window_ms=WINDOW) == pytest.approx(0.5)


def test_combined_score_weights() -> None:
    assert combined_score(1.0, 0.0, alpha=0.8) == pytest.approx(0.8)
    assert combined_score(0.0, 1.0, alpha=0.8) == pytest.approx(0.2)
    assert combined_score(0.5, 0.5, alpha=0.3) == pytest.approx(0.5)


def test_recent_asset_wins_among_equal_similarity() -> None:
    """30 candidates at similarity 0.5; only one acquired now, the rest 5 years ago."""
    old = [_cand(0.5, NOW - 5 * YEAR_MS) for _ in range(29)]
    fresh = _cand(0.5, NOW)
    candidates: List[Candidate] = old[:17] + [fresh] + old[17:]

    ranked = rank_candidates(candidates, now_ms=NOW, alpha=0.8, recency_window_ms=WINDOW, top_n=30)

    assert len(ranked) == 30
    assert ranked[0].asset_id == fresh.asset_id
    assert ranked[0].combined_score > ranked[1].combined_score
    assert [c.asset_id for c in ranked[1:]] == [c.asset_id for c in old]  # docstring: 同分保持输入顺序


def test_scores_in_range_and_non_increasing() -> None:
    candidates = [
        _cand(0.91, NOW - 2 * YEAR_MS),
        _cand(0.42, NOW - 30 * 24 * 3600 * 1000.0),
        _cand(1.4, NOW),  # docstring: 越界相似度截断到 1
        _cand(-0.2, NOW - YEAR_MS),
        _cand(0.77, NOW + 1000.0),
    ]
    ranked = rank_candidates(candidates, now_ms=NOW, recency_window_ms=WINDOW, top_n=10)

    scores = [c.combined_score for c in ranked]
    assert all(0.0 <= float(s) <= 1.0 for s in scores)
    assert all(0.0 <= float(c.recency_score) <= 1.0 for c in ranked)
    assert all(a >= b for a, b in zip(scores, scores[1:]))


def test_unusable_timestamps_are_dropped() -> None:
    good = _cand(0.6, NOW - YEAR_MS)
    nan_ts = _cand(0.99, float("nan"))
    inf_ts = _cand(0.99, float("inf"))
    nan_sim = _cand(float("nan"), NOW)

    ranked = rank_candidates([good, nan_ts, inf_ts, nan_sim], now_ms=NOW, recency_window_ms=WINDOW)

    assert [c.asset_id for c in ranked] == [good.asset_id]
    assert math.isfinite(ranked[0].combined_score)


def test_missing_timestamp_scores_as_now() -> None:
    missing = _cand(0.9, None)
    fresh = _cand(0.1, NOW)

    ranked = rank_candidates([fresh, missing], now_ms=NOW, recency_window_ms=WINDOW)

    assert [c.asset_id for c in ranked] == [missing.asset_id, fresh.asset_id]
    assert ranked[0].recency_score == 1.0
    assert ranked[0].combined_score == pytest.approx(0.8 * 0.9 + 0.2)


def test_truncation_and_dedup() -> None:
    dup_id = str(uuid.uuid4())
    first = _cand(0.3, NOW, asset_id=dup_id)
    second = _cand(0.9, NOW, asset_id=dup_id)
    others = [_cand(0.1 * i, NOW - YEAR_MS) for i in range(1, 8)]

    ranked = rank_candidates([first, second, *others], now_ms=NOW, recency_window_ms=WINDOW, top_n=3)

    assert len(ranked) == 3
    ids = [c.asset_id for c in ranked]
    assert len(set(ids)) == 3
    kept = [c for c in rank_candidates([first, second], now_ms=NOW, recency_window_ms=WINDOW) if c.asset_id == dup_id]
    assert kept[0].similarity == 0.3  # docstring: 首次出现胜出

    assert rank_candidates(others, now_ms=NOW, top_n=0) == []


def test_ranking_is_deterministic() -> None:
    candidates = [_cand(0.1 * (i % 7), NOW - i * 40 * 24 * 3600 * 1000.0) for i in range(25)]
    a = rank_candidates(candidates, now_ms=NOW, recency_window_ms=WINDOW, top_n=10)
    b = rank_candidates(candidates, now_ms=NOW, recency_window_ms=WINDOW, top_n=10)
    assert a == b
    assert rank_candidates([], now_ms=NOW) == []


def test_invalid_parameters_raise() -> None:
    with pytest.raises(ValueError):
        rank_candidates([_cand(0.5, NOW)], now_ms=NOW, alpha=1.5)
    with pytest.raises(ValueError):
        rank_candidates([_cand(0.5, NOW)], now_ms=NOW, recency_window_ms=0)
