# src/asset_rag/backend/pipelines/generation/pipeline.py

"""
[职责] Response Generator：编排 prompt -> LLM -> postprocess，返回已校验的 GeneratedResponse。
[边界] 不持久化；不发事件；不重试；不设调用超时（timeout_s 仅透传给 provider 客户端）。模型调用失败映射为 ExternalDependencyError，输出不合规抛 GenerationValidationError。
[上游关系] services/chat_service.py 在 "Generating personalized response..." 阶段调用。
[下游关系] chat_service 用返回值写 assistant 轮次并产出 RESULT 事件。
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional, Sequence

from asset_rag.backend.pipelines.retrieval.types import Candidate
from asset_rag.backend.schemas.generation import GeneratedResponse
from asset_rag.backend.utils.errors import DomainError, ExternalDependencyError
from asset_rag.backend.utils.logging_ import get_logger, log_event

from . import generator as generator_mod
from . import postprocess as postprocess_mod
from . import prompt as prompt_mod


logger = get_logger("pipelines.generation")


class ResponseGenerator:
    """
    [职责] 持有 provider/model/采样配置（或注入的 LLM），对单次请求执行一次生成。
    [边界] 无请求间状态；llm 注入时忽略 provider 构造逻辑（测试/离线）。
    [上游关系] main.create_app 通过 from_settings 构造；测试直接注入 StaticResponseLLM。
    [下游关系] generator.run_generation / postprocess.parse_generation_output。
    """

    def __init__(
        self,
        *,
        provider: str,
        model_name: str,
        generation_config: Optional[Mapping[str, Any]] = None,
        llm: Optional[Any] = None,
    ) -> None:
        self.provider = str(provider)
        self.model_name = str(model_name)
        self.generation_config: Dict[str, Any] = dict(generation_config or {})
        self._llm = llm

    @classmethod
    def from_settings(cls, settings: Any) -> "ResponseGenerator":
        return cls(
            provider=settings.LLM_PROVIDER,
            model_name=settings.LLM_MODEL,
            generation_config={
                "temperature": settings.LLM_TEMPERATURE,
                "top_k": settings.LLM_TOP_K,
                "top_p": settings.LLM_TOP_P,
                "timeout_s": settings.LLM_TIMEOUT_S,
            },
        )

    async def _invoke(self, messages_snapshot: Mapping[str, Any]) -> Dict[str, Any]:
        return await generator_mod.run_generation(
            messages_snapshot=messages_snapshot,
            model_provider=self.provider,
            model_name=self.model_name,
            generation_config=self.generation_config,
            llm=self._llm,
        )

    async def generate(self, user_query: str, ranked: Sequence[Candidate]) -> GeneratedResponse:
        """
        [职责] 构建 prompt、调用模型、校验输出。
        [边界] 空候选列表同样调用模型（需返回解释性消息与空 assets）。
        """
        messages_snapshot = prompt_mod.build_messages(user_query=user_query, candidates=ranked)

        started = time.perf_counter()
        try:
            raw = await self._invoke(messages_snapshot)
        except DomainError:
            raise
        except Exception as exc:
            raise ExternalDependencyError(
                message="Failed to generate a response.",
                detail={"stage": "generate", "provider": self.provider, "cause": exc.__class__.__name__},
                cause=exc,
            ) from exc
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        log_event(
            logger,
            logging.INFO,
            "generation completed",
            fields={
                "provider": raw.get("provider"),
                "model": raw.get("model"),
                "candidate_count": messages_snapshot.get("candidate_count"),
                "llm_ms": round(elapsed_ms, 3),
                "usage": raw.get("usage"),
            },
        )

        return postprocess_mod.parse_generation_output(raw_text=str(raw.get("raw_text") or ""), candidates=ranked)
