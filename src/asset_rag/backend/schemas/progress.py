# src/asset_rag/backend/schemas/progress.py

"""
[职责] Progress 事件契约：以 stage 为判别字段的三类事件（status / result / error）。
[边界] 仅定义结构与 SSE 帧编码；投递语义（顺序/终态/关闭）由 services/progress.py 负责。
[上游关系] chat_service 通过 ProgressStream 发出事件。
[下游关系] api/routers/chat.py 将事件编码为 text/event-stream 帧。
"""

from __future__ import annotations

import json
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .generation import AssetPick


class StatusEvent(BaseModel):
    """Non-terminal, human-readable progress label."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    stage: Literal["status"] = "status"
    label: str = Field(..., min_length=1)


class ResultEvent(BaseModel):
    """
    [职责] 成功终态：assistant_message + 有序资产列表。
    [边界] items 必须已通过 postprocess 的结构与内容校验。
    [上游关系] chat_service 在生成成功后发出。
    [下游关系] 前端渲染回复与资产卡片。
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    stage: Literal["result"] = "result"
    message: str = Field(...)
    items: List[AssetPick] = Field(default_factory=list)


class ErrorEvent(BaseModel):
    """
    [职责] 失败终态：稳定错误码 + 简短可展示的 detail；限流时携带 reset_at。
    [边界] 不包含内部异常文本/堆栈。
    [上游关系] chat_service 外层捕获 DomainError 后发出。
    [下游关系] 前端展示错误提示与重试时间。
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    stage: Literal["error"] = "error"
    code: str = Field(...)
    detail: str = Field(...)
    reset_at: Optional[str] = Field(default=None)  # docstring: 限流窗口重置时间（ISO-8601）


ProgressEvent = Annotated[Union[StatusEvent, ResultEvent, ErrorEvent], Field(discriminator="stage")]

_PROGRESS_EVENT_ADAPTER: TypeAdapter = TypeAdapter(ProgressEvent)

TERMINAL_STAGES = frozenset({"result", "error"})  # docstring: 终态事件集合


def is_terminal(event: Union[StatusEvent, ResultEvent, ErrorEvent]) -> bool:
    return event.stage in TERMINAL_STAGES


def parse_progress_event(payload: Union[str, bytes, dict]) -> Union[StatusEvent, ResultEvent, ErrorEvent]:
    """Decode one event (JSON text or dict) back into its typed variant."""
    if isinstance(payload, (str, bytes)):
        return _PROGRESS_EVENT_ADAPTER.validate_json(payload)
    return _PROGRESS_EVENT_ADAPTER.validate_python(payload)


def encode_sse(event: Union[StatusEvent, ResultEvent, ErrorEvent]) -> str:
    """Render one event as a server-sent-events frame: ``data: {json}\\n\\n``."""
    body = json.dumps(event.model_dump(mode="json", exclude_none=True), ensure_ascii=False)
    return f"data: {body}\n\n"
