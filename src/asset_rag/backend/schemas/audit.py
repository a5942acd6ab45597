# src/asset_rag/backend/schemas/audit.py

"""
[职责] TraceContext：一次 HTTP 请求的追踪标识（trace_id/request_id）。
[边界] 不负责日志落盘；仅结构化字段定义。
[上游关系] api/middleware.py 从 header 读取或生成。
[下游关系] PipelineContext、错误响应 trace_id、结构化日志。
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

from .ids import UUIDStr, new_uuid


class TraceContext(BaseModel):
    model_config = ConfigDict(extra="allow")

    trace_id: UUIDStr = Field(default_factory=new_uuid)  # docstring: 全链路追踪ID
    request_id: UUIDStr = Field(default_factory=new_uuid)  # docstring: 单次 HTTP 请求ID
    tags: Dict[str, Any] = Field(default_factory=dict)  # docstring: 扩展 tags（user-agent 等）
