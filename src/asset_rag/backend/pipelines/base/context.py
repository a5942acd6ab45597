# src/asset_rag/backend/pipelines/base/context.py

"""
[职责] PipelineContext：单次查询 pipeline 的运行上下文（身份、trace 标识、计时器）。
[边界] 不持有 DB session 与外部客户端；协作者由 ChatPipelineDeps 显式注入；不跨请求共享。
[上游关系] api/routers/chat.py 基于 TraceContext 与 x-user-id 构造。
[下游关系] services/chat_service.py 读取 user_id/timing；logging_.log_event 从中提取 trace 字段。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from asset_rag.backend.schemas.ids import UUIDStr, new_uuid

from .timing import TimingCollector


@dataclass
class PipelineContext:
    """
    [职责] 为单次 pipeline 执行聚合身份与可观测性字段。
    [边界] stage 字段只用于日志标注当前阶段，不参与控制流。
    [上游关系] 路由层或测试构造。
    [下游关系] chat_service、日志。
    """

    user_id: Optional[str] = None  # docstring: 调用方身份（可能缺失，由 pipeline 拒绝）
    trace_id: UUIDStr = field(default_factory=new_uuid)  # docstring: 全链路追踪 ID
    request_id: UUIDStr = field(default_factory=new_uuid)  # docstring: 单次请求 ID
    stage: Optional[str] = None  # docstring: 当前阶段名（日志用）
    timing: TimingCollector = field(default_factory=TimingCollector)
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        *,
        user_id: Optional[str],
        trace_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> "PipelineContext":
        """Build a context, generating trace/request ids when the caller did not supply them."""
        return cls(
            user_id=(str(user_id).strip() or None) if user_id is not None else None,
            trace_id=UUIDStr(trace_id) if trace_id else new_uuid(),
            request_id=UUIDStr(request_id) if request_id else new_uuid(),
        )

    def timing_ms(self) -> Dict[str, float]:
        return self.timing.to_dict()
