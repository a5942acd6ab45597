# src/asset_rag/backend/pipelines/generation/postprocess.py

"""
[职责] generation postprocess：解析 LLM 输出为 GeneratedResponse，并校验其只引用了本次提供的候选。
[边界] 不调用 LLM；不访问 DB；不修补、不强制转换模型输出（允许剥离最外层 code fence）。
[上游关系] generator 返回 raw_text；ranking 输出的候选作为唯一合法引用集合。
[下游关系] ResponseGenerator 返回已校验结构；任何失败抛 GenerationValidationError。
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Mapping, Optional, Sequence, Set, Tuple

from pydantic import ValidationError

from asset_rag.backend.pipelines.retrieval.types import Candidate
from asset_rag.backend.schemas.generation import GeneratedResponse
from asset_rag.backend.utils.errors import GenerationValidationError


__all__ = ["parse_generation_output"]

_CODE_FENCE_OPEN_RE = re.compile(r"^\s*```(?:json)?\s*\n?", re.IGNORECASE)
_CODE_FENCE_CLOSE_RE = re.compile(r"\n?\s*```\s*$", re.IGNORECASE)

_PASSTHROUGH_FIELDS = ("dam_id", "file_name", "url", "preview_path")  # docstring: 必须与候选逐字一致的字段


def _strip_code_fences(text: str) -> str:
    """
    [职责] 去掉最外层 Markdown code fence（``` / ```json）。
    [边界] 只剥一层；不尝试处理嵌套/多段代码块。
    """
    s = str(text or "").strip()
    if s.startswith("```"):
        s = _CODE_FENCE_OPEN_RE.sub("", s).strip()
        s = _CODE_FENCE_CLOSE_RE.sub("", s).strip()
    return s


def _extract_first_json_object_region(text: str) -> Tuple[Optional[str], Optional[str]]:
    """
    [职责] 在 text 中提取第一个完整闭合的 JSON object 区域（{ ... }）。
    [边界] 仅做括号平衡扫描（识别字符串与转义）；不保证一定可被 json.loads 解析。
    """
    s = str(text or "")
    start = s.find("{")
    if start < 0:
        return None, "unable to locate json object"

    depth = 0
    in_str = False
    esc = False
    for i in range(start, len(s)):
        ch = s[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue

        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return s[start : i + 1], None

    return None, f"incomplete json object, depth={depth}"


def _parse_json(raw_text: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    [职责] 解析 raw_text 为 JSON dict。
    [边界] 先整体解析；失败时回退到首个平衡的 {...} 区域；根必须是对象。
    """
    text = _strip_code_fences(raw_text)
    if not text:
        return None, "raw_text is empty"

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        region, region_err = _extract_first_json_object_region(text)
        if region_err:
            return None, region_err
        try:
            data = json.loads(region or "")
        except json.JSONDecodeError as exc:
            return None, f"json parse error: {exc}"

    if not isinstance(data, dict):
        return None, "json root must be an object"
    return data, None


def _candidate_value(candidate: Candidate, field: str) -> Optional[str]:
    val = candidate.metadata.get(field)
    if val is None:
        return None
    text = str(val)
    return text if text.strip() else None


def _check_references(response: GeneratedResponse, candidates: Sequence[Candidate]) -> Optional[Dict[str, Any]]:
    """
    [职责] 内容校验：每个 asset.id 必须属于候选集、不得重复，定位字段须与候选一致。
    [边界] 不校验顺序；候选没有值的字段、或模型留空的字段不约束。
    [上游关系] parse_generation_output。
    [下游关系] 返回 None 表示通过，否则返回失败详情。
    """
    by_id: Mapping[str, Candidate] = {c.asset_id: c for c in candidates}
    seen: Set[str] = set()
    for pick in response.assets:
        cand = by_id.get(pick.id)
        if cand is None:
            return {"reason": "unknown_asset_id", "asset_id": pick.id}
        if pick.id in seen:
            return {"reason": "duplicate_asset_id", "asset_id": pick.id}
        seen.add(pick.id)

        for field in _PASSTHROUGH_FIELDS:
            expected = _candidate_value(cand, field)
            if expected is None:
                continue
            actual = getattr(pick, field)
            if actual not in (None, "") and actual != expected:
                return {"reason": "field_mismatch", "asset_id": pick.id, "field": field}
    return None


def parse_generation_output(*, raw_text: str, candidates: Sequence[Candidate]) -> GeneratedResponse:
    """
    [职责] raw_text -> GeneratedResponse（结构校验 + 引用校验）。
    [边界] 任一校验失败抛 GenerationValidationError，detail 只含失败原因（不含原始输出）。
    [上游关系] ResponseGenerator.generate。
    [下游关系] chat_service 以返回值产出 RESULT 事件。
    """
    payload, parse_error = _parse_json(raw_text)
    if payload is None:
        raise GenerationValidationError(detail={"reason": "invalid_json", "error": str(parse_error)})

    try:
        response = GeneratedResponse.model_validate(payload)
    except ValidationError as exc:
        errors = [
            {"loc": ".".join(str(p) for p in err.get("loc", ())), "type": err.get("type")}
            for err in exc.errors()
        ]
        raise GenerationValidationError(
            detail={"reason": "schema_mismatch", "errors": errors[:5]},
            cause=exc,
        ) from exc

    mismatch = _check_references(response, candidates)
    if mismatch is not None:
        raise GenerationValidationError(detail=mismatch)
    return response
