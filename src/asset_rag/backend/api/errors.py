# src/asset_rag/backend/api/errors.py

"""
[职责] API 错误映射：将异常统一转换为 ErrorResponse 与 HTTP status。
[边界] 不记录日志；不负责 trace/request 注入（由 middleware/deps 负责）。流式 /chat 的错误走 ErrorEvent，不走本模块。
[上游关系] routers（history/health）捕获异常后调用；main.py 注册为 DomainError 处理器。
[下游关系] 返回 ErrorResponse 供前端消费。
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from asset_rag.backend.api.schemas_http._common import ErrorResponse
from asset_rag.backend.schemas.ids import new_uuid
from asset_rag.backend.utils.constants import REQUEST_ID_HEADER, TRACE_ID_HEADER
from asset_rag.backend.utils.errors import to_http_error


def _ensure_trace_id(trace_id: Optional[str]) -> str:
    raw = str(trace_id or "").strip()
    return raw or str(new_uuid())  # docstring: 无 trace_id 时生成兜底


def to_error_response(error: Exception, *, trace_id: Optional[str] = None) -> Tuple[int, ErrorResponse]:
    """
    [职责] 将异常转换为 (status_code, ErrorResponse)。
    [边界] 不写 header；不记录日志。
    """
    status_code, payload = to_http_error(error, trace_id=_ensure_trace_id(trace_id))
    return status_code, ErrorResponse.model_validate(payload)


def to_json_response(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    [职责] 将异常转换为 JSONResponse（含 trace/request header 透传）。
    [边界] 不修改 error 语义。
    """
    status_code, response = to_error_response(error, trace_id=trace_id)
    out_headers: Dict[str, str] = dict(headers or {})
    if trace_id:
        out_headers[TRACE_ID_HEADER] = str(trace_id)
    if request_id:
        out_headers[REQUEST_ID_HEADER] = str(request_id)
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"), headers=out_headers)


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for DomainError raised outside the streaming path."""
    return to_json_response(
        exc,
        trace_id=getattr(request.state, "trace_id", None),
        request_id=getattr(request.state, "request_id", None),
    )
