# src/asset_rag/backend/pipelines/generation/prompt.py

"""
[职责] generation prompt：将用户查询与排序后的候选组织为 messages_snapshot（system + user）。
[边界] 不做 LLM 调用；不访问 DB；不解析输出。候选只序列化 Candidate.to_prompt_dict 的字段。
[上游关系] ResponseGenerator.generate 传入 user_query 与 rank_candidates 的输出。
[下游关系] generator.run_generation 使用 messages 调用模型；postprocess 使用 valid_asset_ids 做引用校验。
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence

from asset_rag.backend.pipelines.retrieval.types import Candidate


__all__ = ["SYSTEM_PROMPT", "build_messages"]

PROMPT_NAME = "asset_recommendation"  # docstring: prompt 名称（日志/回放用）
PROMPT_VERSION = "v1"

SYSTEM_PROMPT = """You are a brand asset assistant. You help marketing teams find approved images in the company asset library.

You are given the user's query and a JSON list of CANDIDATES retrieved for it. Each candidate has an "id",
an "llm_description", metadata fields and three scores: "similarity", "recencyScore" and "combinedScore".

HARD RULES (must follow):
1) Recommend ONLY assets from CANDIDATES. Never invent assets, URLs, file names or IDs.
2) Copy "id", "dam_id", "file_name", "url" and "preview_path" EXACTLY from the candidate you recommend.
   Use null when the candidate has no value for dam_id, file_name or url.
3) Prefer candidates with a higher "combinedScore".
4) If the user asks for the latest, newest or most recent images, prefer candidates with a more recent "image_purchase_date".
5) Take "usage_rights" and "status" into account when they are present.
6) If no candidate fits the query, say so politely in "assistant_message" and return an empty "assets" list.
7) Return ONLY a single JSON object. No markdown. No code fences. No text outside the JSON.

OUTPUT SCHEMA:
{
  "assistant_message": "short conversational reply to the user",
  "assets": [
    {
      "id": "candidate id",
      "dam_id": "candidate dam_id or null",
      "file_name": "candidate file_name or null",
      "url": "candidate url or null",
      "preview_path": "candidate preview_path",
      "label": "short label for the image",
      "reason": "one sentence on why it fits the query"
    }
  ]
}
"""  # docstring: system 角色与输出约束


def _normalize_query(query: str) -> str:
    return " ".join(str(query or "").split())  # docstring: 折叠多余空白，不做语义改写


def _build_user_prompt(*, query: str, candidates_json: str) -> str:
    return (
        f"User Query: {query}\n\n"
        f"Candidates:\n{candidates_json}\n\n"
        "Generate a response following the rules above."
    )


def build_messages(*, user_query: str, candidates: Sequence[Candidate]) -> Dict[str, Any]:
    """
    [职责] 构建 messages_snapshot（system/user + 候选快照 + 合法 id 列表）。
    [边界] 候选顺序保持 ranking 输出顺序；不截断（top_n 已由 ranking 控制）。
    [上游关系] ResponseGenerator.generate。
    [下游关系] run_generation / parse_generation_output。
    """
    normalized_query = _normalize_query(user_query)
    items: List[Dict[str, Any]] = [c.to_prompt_dict() for c in candidates]  # docstring: 候选 JSON 视图
    candidates_json = json.dumps(items, ensure_ascii=False, indent=2, default=str)

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": _build_user_prompt(query=normalized_query, candidates_json=candidates_json)},
    ]

    return {
        "prompt_name": PROMPT_NAME,
        "prompt_version": PROMPT_VERSION,
        "query": normalized_query,
        "messages": messages,
        "candidates": items,
        "valid_asset_ids": [c.asset_id for c in candidates],
        "candidate_count": len(items),
    }  # docstring: messages_snapshot
