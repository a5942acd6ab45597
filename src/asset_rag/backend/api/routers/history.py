# src/asset_rag/backend/api/routers/history.py

"""
[职责] History Router：GET /history（按时间升序读取调用方对话）与 DELETE /history（清空）。
[边界] 身份来自 x-user-id header；缺失时返回 401 ErrorResponse；不触发 pipeline。
[上游关系] 前端恢复/清空会话。
[下游关系] ConversationStore.list_history / clear_history。
"""

from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from asset_rag.backend.api.deps import get_conversation_store, get_trace_context, get_user_id
from asset_rag.backend.api.errors import to_json_response
from asset_rag.backend.api.schemas_http.history import HistoryClearResponse, HistoryItem, HistoryResponse
from asset_rag.backend.schemas.audit import TraceContext
from asset_rag.backend.services.conversation_store import ConversationStore
from asset_rag.backend.utils.errors import UnauthorizedError


router = APIRouter(prefix="/history", tags=["history"])


def _unauthorized(trace_context: TraceContext) -> JSONResponse:
    return to_json_response(
        UnauthorizedError(message="Missing caller identity."),
        trace_id=str(trace_context.trace_id),
        request_id=str(trace_context.request_id),
    )


@router.get("", response_model=HistoryResponse)
async def get_history(
    trace_context: TraceContext = Depends(get_trace_context),
    user_id: Optional[str] = Depends(get_user_id),
    store: ConversationStore = Depends(get_conversation_store),
) -> Union[HistoryResponse, JSONResponse]:
    if not user_id:
        return _unauthorized(trace_context)
    rows = await store.list_history(user_id)
    return HistoryResponse(user_id=user_id, messages=[HistoryItem.model_validate(r) for r in rows])


@router.delete("", response_model=HistoryClearResponse)
async def clear_history(
    trace_context: TraceContext = Depends(get_trace_context),
    user_id: Optional[str] = Depends(get_user_id),
    store: ConversationStore = Depends(get_conversation_store),
) -> Union[HistoryClearResponse, JSONResponse]:
    if not user_id:
        return _unauthorized(trace_context)
    deleted = await store.clear_history(user_id)
    return HistoryClearResponse(user_id=user_id, deleted=deleted)
