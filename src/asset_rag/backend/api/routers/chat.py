# src/asset_rag/backend/api/routers/chat.py

"""
[职责] Chat Router：POST /chat，以 text/event-stream 推送 ProgressEvent（SSE data 帧）。
[边界] 只做 HTTP 映射：身份/trace 解析、开流前限流计数、事件编码；pipeline 失败不改变 HTTP status（以 ERROR 事件表达）。
[上游关系] 前端提交完整对话（x-user-id header 标识调用方）。
[下游关系] services/chat_service.start_chat_pipeline；X-RateLimit-* 与 trace header 回写。
"""

from __future__ import annotations

from typing import AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from asset_rag.backend.api.deps import get_pipeline_deps, get_trace_context, get_user_id
from asset_rag.backend.api.schemas_http.chat import ChatRequest
from asset_rag.backend.pipelines.base.context import PipelineContext
from asset_rag.backend.schemas.audit import TraceContext
from asset_rag.backend.schemas.progress import encode_sse
from asset_rag.backend.services.chat_service import ChatPipelineDeps, start_chat_pipeline
from asset_rag.backend.services.progress import ProgressStream
from asset_rag.backend.services.rate_limit import RateLimitInfo, rate_limit_headers
from asset_rag.backend.utils.constants import REQUEST_ID_HEADER, TRACE_ID_HEADER


router = APIRouter(prefix="/chat", tags=["chat"])

SSE_MEDIA_TYPE = "text/event-stream"


async def _sse_frames(stream: ProgressStream) -> AsyncIterator[str]:
    """Encode events until the terminal one; a dropped connection detaches the stream."""
    try:
        async for event in stream.events():
            yield encode_sse(event)
    finally:
        stream.detach()  # docstring: 读者离开（正常结束或断开），后续写入不再缓冲


@router.post("")
async def chat(
    body: ChatRequest,
    trace_context: TraceContext = Depends(get_trace_context),
    user_id: Optional[str] = Depends(get_user_id),
    deps: ChatPipelineDeps = Depends(get_pipeline_deps),
) -> StreamingResponse:
    """
    [职责] 启动单次查询 pipeline 并以 SSE 返回进度与终态事件。
    [边界] 每个请求恰好计数一次（缺失身份时不计数，由 pipeline 以 unauthorized 拒绝）。
    """
    headers: Dict[str, str] = {
        TRACE_ID_HEADER: str(trace_context.trace_id),
        REQUEST_ID_HEADER: str(trace_context.request_id),
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }

    rate_info: Optional[RateLimitInfo] = None
    if user_id:
        rate_info = deps.rate_limiter.check(user_id)
        headers.update(rate_limit_headers(rate_info))

    ctx = PipelineContext.create(
        user_id=user_id,
        trace_id=trace_context.trace_id,
        request_id=trace_context.request_id,
    )
    stream = ProgressStream()
    start_chat_pipeline(ctx=ctx, request=body.to_domain(), stream=stream, deps=deps, rate_info=rate_info)

    return StreamingResponse(_sse_frames(stream), media_type=SSE_MEDIA_TYPE, headers=headers)
