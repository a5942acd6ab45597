# src/asset_rag/backend/pipelines/retrieval/types.py
"""
[职责] Retrieval types：检索与排序阶段共享的 Candidate 结构（无 DB/外部依赖）。
[边界] 仅定义数据结构与派生分数的承载；不包含检索或排序逻辑。
[上游关系] vector.py 产出（similarity 已归一化到 [0,1]）；ranking.py 填充 recency/combined。
[下游关系] generation/prompt.py 序列化为模型输入；postprocess 以 asset_id 集合做引用校验。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class Candidate:
    """
    [职责] 单个候选资产：id、描述、元数据、采购时间与三类分数。
    [边界] 请求内瞬态对象；recency_score/combined_score 在排序前为 None。
    [上游关系] SimilarityIndexClient.query。
    [下游关系] rank_candidates / ResponseGenerator。
    """

    asset_id: str
    description: str
    similarity: float  # docstring: 归一化相似度 [0,1]
    acquired_at_ms: Optional[float]  # docstring: 采购时间（epoch ms）；None 表示缺失（按 now 计分），NaN 表示不可解析
    metadata: Mapping[str, Any] = field(default_factory=dict)
    recency_score: Optional[float] = None
    combined_score: Optional[float] = None

    def with_scores(self, *, recency_score: float, combined_score: float) -> "Candidate":
        return replace(self, recency_score=recency_score, combined_score=combined_score)

    def to_prompt_dict(self) -> Dict[str, Any]:
        """Flatten into the JSON object the generator sees for this candidate."""
        out: Dict[str, Any] = {"id": self.asset_id, "llm_description": self.description}
        for key, value in self.metadata.items():
            if value is not None and key not in out:
                out[key] = value
        out["similarity"] = round(float(self.similarity), 6)
        if self.recency_score is not None:
            out["recencyScore"] = round(float(self.recency_score), 6)
        if self.combined_score is not None:
            out["combinedScore"] = round(float(self.combined_score), 6)
        return out
