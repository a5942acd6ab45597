# src/asset_rag/backend/pipelines/generation/generator.py

"""
[职责] generation generator：基于 LlamaIndex LLM 抽象执行模型调用，产出 raw 文本与使用快照。
[边界] 不解析 JSON；不校验引用；不重试；不负责编排。
[上游关系] ResponseGenerator 传入 messages_snapshot + provider/model + generation_config（或注入现成 LLM）。
[下游关系] postprocess 解析 raw_text 并做结构/内容校验。
"""

from __future__ import annotations

import inspect
import json
from inspect import Parameter
from typing import Any, Dict, List, Mapping, Optional, Sequence

from llama_index.core.llms import (
    LLM,
    ChatMessage,
    CompletionResponse,
    CompletionResponseGen,
    CustomLLM,
    LLMMetadata,
    MessageRole,
)
from llama_index.core.llms.callbacks import llm_completion_callback


__all__ = ["StaticResponseLLM", "build_mock_response", "resolve_llm", "run_generation"]


class StaticResponseLLM(CustomLLM):
    """
    [职责] 固定文本输出的 LlamaIndex LLM（mock provider 与测试注入）。
    [边界] 忽略输入 prompt；chat/achat 由 CustomLLM 基于 complete 派生。
    """

    response_text: str = ""
    model_name: str = "mock"

    @property
    def metadata(self) -> LLMMetadata:
        return LLMMetadata(model_name=self.model_name)

    @llm_completion_callback()
    def complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponse:
        return CompletionResponse(text=self.response_text)

    @llm_completion_callback()
    def stream_complete(self, prompt: str, formatted: bool = False, **kwargs: Any) -> CompletionResponseGen:
        yield CompletionResponse(text=self.response_text, delta=self.response_text)


def _filter_kwargs(fn: Any, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """
    [职责] 过滤参数，仅保留目标函数支持的关键字。
    [边界] 不做值校验；仅做参数名过滤；支持 **kwargs 时全部透传。
    """
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return {}
    for p in sig.parameters.values():
        if p.kind == Parameter.VAR_KEYWORD:
            return dict(kwargs)
    return {k: v for k, v in kwargs.items() if k in sig.parameters}


def _normalize_provider(provider: str) -> str:
    return str(provider or "").strip().lower()  # docstring: provider 归一化


def _normalize_model_name(model_name: str) -> str:
    return str(model_name or "").strip()


def _normalize_generation_config(cfg: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    [职责] 归一化采样参数（temperature/top_k/top_p/timeout_s），缺省项不填充。
    [边界] 只做类型转换；非法值丢弃。
    """
    out: Dict[str, Any] = {}
    raw = dict(cfg or {})
    for key, caster in (("temperature", float), ("top_k", int), ("top_p", float), ("timeout_s", float)):
        val = raw.get(key)
        if val is None:
            continue
        try:
            out[key] = caster(val)
        except (TypeError, ValueError):
            continue  # docstring: 非法值忽略，使用 provider 默认
    return out


def build_mock_response(messages_snapshot: Mapping[str, Any], *, max_assets: int = 3) -> str:
    """
    [职责] 基于候选快照构造确定性 JSON 响应（用于 mock/local provider）。
    [边界] 只引用快照中的候选并逐字透传定位字段；不保证推荐质量。
    [上游关系] resolve_llm（mock 分支）。
    [下游关系] StaticResponseLLM 输出。
    """
    candidates = list(messages_snapshot.get("candidates") or [])[: max(0, int(max_assets))]
    assets: List[Dict[str, Any]] = []
    for item in candidates:
        asset_id = str(item.get("id") or "").strip()
        if not asset_id:
            continue
        description = str(item.get("llm_description") or "")
        assets.append(
            {
                "id": asset_id,
                "dam_id": item.get("dam_id"),
                "file_name": item.get("file_name"),
                "url": item.get("url"),
                "preview_path": str(item.get("preview_path") or ""),
                "label": str(item.get("file_name") or description[:40] or asset_id),
                "reason": f"Relevance score {float(item.get('combinedScore') or 0.0):.2f}.",
            }
        )

    if assets:
        message = f"Here are {len(assets)} assets that match your request."
    else:
        message = "I couldn't find any approved assets that match your request."
    return json.dumps({"assistant_message": message, "assets": assets}, ensure_ascii=False)


def resolve_llm(
    *,
    provider: str,
    model_name: str,
    generation_config: Optional[Mapping[str, Any]] = None,
    messages_snapshot: Optional[Mapping[str, Any]] = None,
) -> LLM:
    """
    [职责] 根据 provider/model 构造 LlamaIndex LLM 实例。
    [边界] provider 包按需导入；未知 provider 抛 ValueError（由调用方映射为依赖故障）。
    [上游关系] run_generation。
    [下游关系] _call_llm。
    """
    provider_key = _normalize_provider(provider)
    model = _normalize_model_name(model_name)
    cfg = _normalize_generation_config(generation_config)

    if provider_key in {"mock", "local"}:
        return StaticResponseLLM(
            response_text=build_mock_response(messages_snapshot or {}),
            model_name=model or "mock",
        )
    if provider_key in {"gemini", "google", "google_genai"}:
        from google.genai import types as genai_types
        from llama_index.llms.google_genai import GoogleGenAI

        gen_cfg = genai_types.GenerateContentConfig(
            temperature=cfg.get("temperature"),
            top_k=cfg.get("top_k"),
            top_p=cfg.get("top_p"),
            response_mime_type="application/json",  # docstring: 要求模型直接返回 JSON
        )
        kwargs = {"model": model, "temperature": cfg.get("temperature"), "generation_config": gen_cfg}
        return GoogleGenAI(**_filter_kwargs(GoogleGenAI.__init__, kwargs))
    if provider_key == "openai":
        from llama_index.llms.openai import OpenAI

        kwargs = {
            "model": model,
            "temperature": cfg.get("temperature", 0.7),
            "timeout": cfg.get("timeout_s", 60.0),
            "additional_kwargs": {"top_p": cfg["top_p"]} if "top_p" in cfg else {},
        }
        return OpenAI(**_filter_kwargs(OpenAI.__init__, kwargs))
    if provider_key == "ollama":
        from llama_index.llms.ollama import Ollama

        from asset_rag.config import settings  # docstring: 延迟加载 settings 读取 base_url

        options = {k: cfg[k] for k in ("top_k", "top_p") if k in cfg}
        kwargs = {
            "model": model,
            "base_url": settings.OLLAMA_BASE_URL,
            "temperature": cfg.get("temperature", 0.7),
            "request_timeout": float(settings.OLLAMA_REQUEST_TIMEOUT_S),
            "json_mode": True,
            "additional_kwargs": options,
        }
        return Ollama(**_filter_kwargs(Ollama.__init__, kwargs))

    raise ValueError(f"unsupported model provider: {provider}")


def _resolve_role(role: str) -> MessageRole:
    raw = str(role or "").strip().lower()
    for member in (MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT):
        if raw == member.value:
            return member
    return MessageRole.USER  # docstring: 未知角色回退 user


def _build_chat_messages(messages: Sequence[Mapping[str, Any]]) -> List[ChatMessage]:
    """Convert role/content dicts into LlamaIndex ChatMessage objects."""
    return [
        ChatMessage(role=_resolve_role(msg.get("role", "user")), content=str(msg.get("content") or ""))
        for msg in messages
    ]


def _messages_to_prompt(messages: Sequence[ChatMessage]) -> str:
    lines: List[str] = []
    for msg in messages:
        role = str(getattr(msg.role, "value", msg.role) or "").upper()
        content = str(msg.content or "")
        lines.append(f"{role}:\n{content}" if role else content)
    return "\n\n".join(lines).strip()


async def _call_llm(*, llm: Any, messages: Sequence[ChatMessage]) -> Any:
    """
    [职责] 调用 LLM（优先 chat，其次 complete）。
    [边界] 采样参数已在构造 LLM 时注入；这里不透传额外 kwargs。
    """
    if hasattr(llm, "achat"):
        return await llm.achat(messages)
    if hasattr(llm, "chat"):
        return llm.chat(messages)

    prompt = _messages_to_prompt(messages)  # docstring: chat -> prompt
    if hasattr(llm, "acomplete"):
        return await llm.acomplete(prompt)
    if hasattr(llm, "complete"):
        return llm.complete(prompt)

    raise AttributeError("LLM instance missing chat/complete interfaces")


def _extract_text(response: Any) -> str:
    """
    [职责] 从 LLM 响应中提取文本内容。
    [边界] 只做字段探测；不做 JSON 解析。
    """
    if response is None:
        return ""
    msg = getattr(response, "message", None)
    if msg is not None and hasattr(msg, "content"):
        return str(getattr(msg, "content") or "")  # docstring: ChatResponse.message.content
    if hasattr(response, "text"):
        return str(getattr(response, "text") or "")  # docstring: CompletionResponse.text
    return str(response)


def _extract_usage(response: Any) -> Optional[Dict[str, Any]]:
    if response is None:
        return None
    raw = getattr(response, "raw", None)
    if isinstance(raw, Mapping) and isinstance(raw.get("usage"), Mapping):
        return dict(raw["usage"])
    extra = getattr(response, "additional_kwargs", None)
    if isinstance(extra, Mapping) and isinstance(extra.get("usage"), Mapping):
        return dict(extra["usage"])
    return None


def _resolve_output_model(llm: Any, fallback: str) -> str:
    meta = getattr(llm, "metadata", None)
    name = getattr(meta, "model_name", None) if meta is not None else None
    return str(name or fallback or "")


async def run_generation(
    *,
    messages_snapshot: Mapping[str, Any],
    model_provider: str,
    model_name: str,
    generation_config: Optional[Mapping[str, Any]] = None,
    llm: Optional[Any] = None,
) -> Dict[str, Any]:
    """
    [职责] 执行 LLM 生成并返回 raw_text/provider/model/usage 快照。
    [边界] 不解析 JSON；不校验引用；provider/网络异常原样上抛（由 pipeline 映射）。
    [上游关系] ResponseGenerator.generate。
    [下游关系] parse_generation_output。
    """
    messages_payload = messages_snapshot.get("messages")
    if not isinstance(messages_payload, list) or not messages_payload:
        raise ValueError("messages_snapshot missing messages")

    model = llm or resolve_llm(
        provider=model_provider,
        model_name=model_name,
        generation_config=generation_config,
        messages_snapshot=messages_snapshot,
    )

    response = await _call_llm(llm=model, messages=_build_chat_messages(messages_payload))

    return {
        "raw_text": _extract_text(response),
        "provider": _normalize_provider(model_provider),
        "model": _resolve_output_model(model, _normalize_model_name(model_name)),
        "usage": _extract_usage(response),
    }
