# src/asset_rag/backend/api/schemas_http/_common.py

"""
[职责] HTTP Schema 公共组件：ErrorResponse 与通用 ID 类型，作为 API 契约基础。
[边界] 仅描述 HTTP 输入/输出结构；不负责 trace 注入、异常映射或业务逻辑。
[上游关系] api/errors 将 DomainError 映射到 ErrorResponse。
[下游关系] api/schemas_http/{chat,history} 复用本模块结构。
"""

from __future__ import annotations

from typing import Any, Dict, NewType

from pydantic import BaseModel, ConfigDict, Field


UUIDStr = NewType("UUIDStr", str)  # docstring: 通用 UUID 字符串类型（运行时仍为 str）

TraceId = UUIDStr
RequestId = UUIDStr
ChatMessageId = UUIDStr

ErrorDetail = Dict[str, Any]  # docstring: ErrorResponse.error.detail 结构（必须 JSON-safe）


class ErrorInfo(BaseModel):
    """
    [职责] ErrorInfo：统一错误载体（code/message/trace_id/detail）。
    [边界] 不包含 HTTP status/retryable；这些由 api/errors.py 决定。
    """

    model_config = ConfigDict(extra="forbid")

    code: str = Field(..., min_length=1)  # docstring: 稳定错误码（标准码或 area.reason）
    message: str = Field(..., min_length=1)
    trace_id: TraceId = Field(...)
    detail: ErrorDetail = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Top-level error envelope; trace/request ids are also echoed as headers."""

    model_config = ConfigDict(extra="forbid")

    error: ErrorInfo = Field(...)
