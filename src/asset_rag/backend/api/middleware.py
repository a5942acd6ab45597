# src/asset_rag/backend/api/middleware.py

"""
[职责] API Middleware：注入 trace_id/request_id 并记录请求耗时。
[边界] 不做业务逻辑与异常处理；流式响应只统计到响应头发出为止。
[上游关系] main.create_app 注册本 middleware。
[下游关系] deps.get_trace_context 读取 request.state.trace_context。
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from asset_rag.backend.schemas.audit import TraceContext
from asset_rag.backend.schemas.ids import UUIDStr, new_uuid
from asset_rag.backend.utils.constants import REQUEST_ID_HEADER, TIMING_TOTAL_MS_KEY, TRACE_ID_HEADER
from asset_rag.backend.utils.logging_ import get_logger, log_event


logger = get_logger("api.middleware")


def _resolve_header_id(value: Optional[str]) -> Optional[str]:
    raw = str(value or "").strip()
    return raw or None  # docstring: 空值回退 None


class TraceContextMiddleware(BaseHTTPMiddleware):
    """
    [职责] 注入 trace/request id，回写 header，并记录 request 耗时。
    [边界] 不捕获异常；不替代 api/errors.py。
    [上游关系] FastAPI app.add_middleware 注册。
    [下游关系] deps.get_trace_context 使用 request.state.trace_context。
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_ts = time.perf_counter()

        trace_id = _resolve_header_id(request.headers.get(TRACE_ID_HEADER)) or str(new_uuid())
        request_id = _resolve_header_id(request.headers.get(REQUEST_ID_HEADER)) or str(new_uuid())

        request.state.trace_context = TraceContext(trace_id=UUIDStr(trace_id), request_id=UUIDStr(request_id))
        request.state.trace_id = trace_id
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            total_ms = (time.perf_counter() - start_ts) * 1000.0
            request.state.timing_ms = {TIMING_TOTAL_MS_KEY: total_ms}

        response.headers[TRACE_ID_HEADER] = trace_id
        response.headers[REQUEST_ID_HEADER] = request_id
        log_event(
            logger,
            logging.INFO,
            "http request handled",
            fields={
                "trace_id": trace_id,
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                TIMING_TOTAL_MS_KEY: round(total_ms, 3),
            },
        )
        return response
