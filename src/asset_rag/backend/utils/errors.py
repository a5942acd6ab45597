# src/asset_rag/backend/utils/errors.py

"""
[职责] 统一领域错误合同（error_code/message/detail/cause）与 HTTP/流式错误事件映射（http_status/retryable）。
[边界] 不依赖 FastAPI；不记录日志；只区分 Rejection / Dependency / Configuration 三类可对外暴露的故障。
[上游关系] services/pipelines 抛出 DomainError 子类；PersistenceFault 与 RankingDefect 不经过本模块（仅日志）。
[下游关系] api/errors.py 映射为 ErrorResponse；services/chat_service.py 映射为终态 ErrorEvent。
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional, Tuple


ErrorDetail = Dict[str, Any]  # docstring: 错误细节类型（必须 JSON-safe）

ERROR_CODE_PATTERN_DOT = re.compile(r"^[a-z][a-z0-9]*(?:\.[a-z0-9_]+)+$")  # docstring: area.reason 规范

STANDARD_ERROR_CODES = {  # docstring: 对外稳定错误码集合
    "bad_request",
    "unauthorized",
    "rate_limited",
    "external_dependency",
    "configuration_error",
    "internal_error",
}

ERROR_HTTP_STATUS_BY_CODE = {  # docstring: 错误码 -> HTTP status
    "bad_request": 400,
    "unauthorized": 401,
    "rate_limited": 429,
    "external_dependency": 503,
    "configuration_error": 500,
    "internal_error": 500,
}

ERROR_RETRYABLE_BY_CODE = {  # docstring: 错误码 -> retryable 默认值
    "bad_request": False,
    "unauthorized": False,
    "rate_limited": True,
    "external_dependency": True,
    "configuration_error": False,
    "internal_error": False,
}

INTERNAL_ERROR_CODE = "internal_error"  # docstring: 未知异常统一错误码
INTERNAL_ERROR_MESSAGE = "internal error"  # docstring: 未知异常统一消息


def is_valid_error_code(error_code: str) -> bool:
    """Return True for a standard code or an area.reason style code."""

    if not error_code:
        return False
    if error_code in STANDARD_ERROR_CODES:
        return True
    return bool(ERROR_CODE_PATTERN_DOT.match(error_code))  # docstring: 扩展错误码（如 generation.invalid_output）


def ensure_json_safe_detail(detail: ErrorDetail) -> ErrorDetail:
    """
    [职责] 校验 detail 是否可 JSON 序列化。
    [边界] detail 必须是 dict；不做降级或裁剪。
    [上游关系] DomainError 初始化时调用。
    [下游关系] ErrorResponse.detail / ErrorEvent 可直接写出 detail。
    """

    if not isinstance(detail, dict):
        raise ValueError("detail must be a dict")  # docstring: 强制 detail 为 dict 结构
    try:
        json.dumps(detail)  # docstring: JSON 序列化校验
    except TypeError as exc:
        raise ValueError("detail must be JSON-serializable") from exc
    return detail


class DomainError(Exception):
    """
    [职责] 领域错误最小合同：error_code/message/detail/cause + http_status/retryable 提示。
    [边界] 仅表达语义，不承担日志与输出；message 是可对外展示的短句，cause 只进日志。
    [上游关系] services/pipelines 抛出本错误；必要时携带 cause。
    [下游关系] api/errors.py 与 chat_service 读取 error_code/message/detail。
    """

    def __init__(
        self,
        *,
        error_code: str,
        message: str,
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        http_status: Optional[int] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        if not is_valid_error_code(error_code):
            raise ValueError(f"invalid error_code: {error_code}")  # docstring: 防止不规范错误码泄露
        normalized_detail = detail or {}
        ensure_json_safe_detail(normalized_detail)

        super().__init__(message)
        self.error_code = error_code  # docstring: 稳定错误码
        self.message = message  # docstring: 用户可读错误信息
        self.detail = normalized_detail  # docstring: JSON-safe 细节
        self.cause = cause  # docstring: 上游异常引用（仅日志）
        self.http_status = (
            http_status if http_status is not None else ERROR_HTTP_STATUS_BY_CODE.get(error_code, 500)
        )
        self.retryable = retryable if retryable is not None else ERROR_RETRYABLE_BY_CODE.get(error_code, False)

        if cause is not None:
            self.__cause__ = cause  # docstring: 保留异常链路

    def to_dict(self) -> Dict[str, Any]:
        """Return the ErrorResponse.error payload (no cause, no trace_id)."""

        return {
            "code": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }


class RejectionError(DomainError):
    """
    [职责] 请求在任何外部调用之前被拒绝（Rejection 类故障）的公共基类。
    [边界] 不可重试语义由子类决定；抛出时下游阶段一律不执行。
    [上游关系] 限流/身份/输入校验。
    [下游关系] chat_service 映射为终态 ErrorEvent。
    """


class BadRequestError(RejectionError):
    """Empty or malformed input (e.g. no user turn in the conversation)."""

    def __init__(
        self,
        *,
        message: str = "bad request",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            error_code="bad_request",
            message=message,
            detail=detail,
            cause=cause,
            http_status=400,
            retryable=False,
        )


class UnauthorizedError(RejectionError):
    """Caller identity is missing."""

    def __init__(
        self,
        *,
        message: str = "unauthorized",
        detail: Optional[ErrorDetail] = None,
    ) -> None:
        super().__init__(
            error_code="unauthorized",
            message=message,
            detail=detail,
            http_status=401,
            retryable=False,
        )


class RateLimitedError(RejectionError):
    """
    [职责] 表达限流拒绝（429），detail 中携带 reset_at（ISO-8601）。
    [边界] 不持有限流窗口本身；只描述一次拒绝。
    [上游关系] services/rate_limit.py 的 enforce() 抛出。
    [下游关系] ErrorEvent.reset_at / HTTP X-RateLimit-Reset。
    """

    def __init__(
        self,
        *,
        reset_at: str,
        limit: int,
        message: str = "Rate limit exceeded. Please try again later.",
    ) -> None:
        super().__init__(
            error_code="rate_limited",
            message=message,
            detail={"reset_at": reset_at, "limit": int(limit), "remaining": 0},
            http_status=429,
            retryable=True,
        )
        self.reset_at = reset_at  # docstring: 窗口重置时间（ISO-8601）


class ExternalDependencyError(DomainError):
    """
    [职责] 表达外部依赖故障（503）：embedding / 向量检索 / 生成模型 调用失败。
    [边界] 不绑定具体 provider；不泄露密钥或 endpoint；pipeline 内不重试。
    [上游关系] pipelines 捕获第三方异常后抛出。
    [下游关系] ErrorEvent(code=external_dependency)；HTTP 503。
    """

    def __init__(
        self,
        *,
        message: str = "external dependency error",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
        error_code: str = "external_dependency",
    ) -> None:
        super().__init__(
            error_code=error_code,
            message=message,
            detail=detail,
            cause=cause,
            http_status=503,
            retryable=True,
        )


class GenerationValidationError(ExternalDependencyError):
    """
    [职责] 生成模型输出不符合固定结构或引用了未提供的候选（仍属于 Dependency 故障）。
    [边界] 不做任何修补或强制转换；一旦抛出即不得产生 RESULT。
    [上游关系] pipelines/generation/postprocess.py。
    [下游关系] chat_service 映射为 ErrorEvent；不写入 assistant 消息。
    """

    def __init__(
        self,
        *,
        message: str = "The assistant returned an invalid response.",
        detail: Optional[ErrorDetail] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            message=message,
            detail=detail,
            cause=cause,
            error_code="generation.invalid_output",
        )


class ConfigurationError(DomainError):
    """Startup-time misconfiguration, e.g. embedding/index dimension mismatch."""

    def __init__(
        self,
        *,
        message: str = "configuration error",
        detail: Optional[ErrorDetail] = None,
    ) -> None:
        super().__init__(
            error_code="configuration_error",
            message=message,
            detail=detail,
            http_status=500,
            retryable=False,
        )


class InternalError(DomainError):
    """
    [职责] 表达未知异常的内部错误（500）语义。
    [边界] 不暴露原始异常堆栈到 message/detail。
    [上游关系] chat_service / api/errors.py 捕获未知异常时包装。
    [下游关系] 前端接收稳定的 internal_error 码。
    """

    def __init__(
        self,
        *,
        message: str = INTERNAL_ERROR_MESSAGE,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            error_code=INTERNAL_ERROR_CODE,
            message=message,
            cause=cause,
            http_status=500,
            retryable=False,
        )


def coerce_domain_error(error: BaseException) -> DomainError:
    """
    [职责] 将任意异常归一化为 DomainError（未知异常降级为 InternalError）。
    [边界] 不记录日志；不修改原异常。
    [上游关系] chat_service 外层捕获、api/errors.py。
    [下游关系] ErrorEvent / ErrorResponse 构造。
    """

    if isinstance(error, DomainError):
        return error
    cause = error if isinstance(error, Exception) else None
    return InternalError(cause=cause)  # docstring: 内部原因只进日志


def to_http_error(
    error: Exception,
    *,
    trace_id: Optional[str] = None,
) -> Tuple[int, Dict[str, Any]]:
    """
    [职责] 将异常转换为 HTTP status + ErrorResponse payload（不耦合 FastAPI）。
    [边界] 不注入 request_id；不做日志记录。
    [上游关系] api/errors.py 捕获异常后调用。
    [下游关系] routers 返回统一 ErrorResponse。
    """

    domain = coerce_domain_error(error)
    payload = {"error": domain.to_dict()}
    if trace_id:
        payload["error"]["trace_id"] = trace_id  # docstring: API 层注入 trace_id
    return domain.http_status, payload
