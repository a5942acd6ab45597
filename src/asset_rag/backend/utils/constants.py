# src/asset_rag/backend/utils/constants.py

"""
[职责] 集中定义检索/排序/限流默认值与协议字段名（header/trace/status label），降低跨模块硬编码。
[边界] 不读取环境变量；运行时可变配置在 asset_rag/config.py。
[上游关系] config.Settings 以此为默认值；services/pipelines/api 引用稳定字段名。
[下游关系] 日志、SSE 事件与 HTTP header 使用一致字段名。
"""

from __future__ import annotations


DEFAULT_RATE_LIMIT_MAX_REQUESTS = 20  # docstring: 每窗口允许请求数
DEFAULT_RATE_LIMIT_WINDOW_MS = 60 * 1000  # docstring: 限流窗口长度（毫秒）

DEFAULT_VECTOR_TOP_K = 30  # docstring: 向量检索召回数
DEFAULT_RESULT_TOP_N = 10  # docstring: 排序后交给生成模型的候选数
DEFAULT_RANK_ALPHA = 0.8  # docstring: combined = alpha*similarity + (1-alpha)*recency
DEFAULT_RECENCY_WINDOW_MS = 3 * 365 * 24 * 60 * 60 * 1000  # docstring: 新鲜度衰减窗口（3 年）
DEFAULT_ELIGIBLE_STATUS = "approved"  # docstring: 可检索资产状态

USER_ID_HEADER = "x-user-id"  # docstring: 调用方身份 header
TRACE_ID_HEADER = "x-trace-id"
REQUEST_ID_HEADER = "x-request-id"
RATE_LIMIT_LIMIT_HEADER = "X-RateLimit-Limit"
RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"

TRACE_ID_KEY = "trace_id"
REQUEST_ID_KEY = "request_id"
USER_ID_KEY = "user_id"
STAGE_KEY = "stage"

TRACE_FIELD_KEYS = (  # docstring: 结构化日志推荐字段集合
    TRACE_ID_KEY,
    REQUEST_ID_KEY,
    USER_ID_KEY,
    STAGE_KEY,
)

TIMING_MS_KEY = "timing_ms"
TIMING_TOTAL_MS_KEY = "total_ms"

STATUS_ANALYZING = "Analyzing your query..."  # docstring: embedding 阶段
STATUS_SEARCHING = "Searching through {count} assets..."  # docstring: 计数阶段
STATUS_SEARCHING_FALLBACK = "Searching the asset library..."  # docstring: 计数失败时的降级文案
STATUS_FOUND = "Found {count} potential matches"  # docstring: 向量检索完成
STATUS_RANKING = "Ranking by relevance and recency..."
STATUS_GENERATING = "Generating response..."

ERROR_KEY = "error"
ERROR_CODE_KEY = "code"
ERROR_MESSAGE_KEY = "message"
ERROR_DETAIL_KEY = "detail"
