# src/asset_rag/backend/pipelines/retrieval/embed.py

"""
[职责] Query Embedder：使用 LlamaIndex Embedding 抽象把查询文本转换为固定维度向量。
[边界] 不检索、不缓存、不重试；维度不一致属于配置故障（启动时由 verify_index_dimension 检测）。
[上游关系] services/chat_service.py 在 "Analyzing your query..." 阶段调用 embed(text)。
[下游关系] pipelines/retrieval/vector.py 以该向量查询 Milvus。
"""

from __future__ import annotations

import hashlib
import inspect
from typing import Any, Dict, List, Optional

from llama_index.core.base.embeddings.base import BaseEmbedding

from asset_rag.backend.utils.errors import ConfigurationError, ExternalDependencyError
from asset_rag.backend.utils.logging_ import get_logger


logger = get_logger("pipelines.retrieval.embed")


class HashEmbedding(BaseEmbedding):
    """Deterministic sha256-based embedding for offline runs and tests (not semantic)."""

    def __init__(self, *, dim: int, model_name: str = "hash") -> None:
        super().__init__(model_name=model_name)
        self._dim = int(dim)

    def _hash_to_vec(self, text: str) -> List[float]:
        vals: List[float] = []
        seed = hashlib.sha256(text.encode("utf-8")).digest()
        while len(vals) < self._dim:
            for b in seed:
                vals.append((b / 255.0) * 2.0 - 1.0)  # docstring: 映射到 [-1, 1]
                if len(vals) >= self._dim:
                    break
            seed = hashlib.sha256(seed).digest()  # docstring: 扩展伪随机序列
        return vals

    def _get_text_embedding(self, text: str) -> List[float]:
        return self._hash_to_vec(text)

    def _get_query_embedding(self, query: str) -> List[float]:
        return self._hash_to_vec(query)

    async def _aget_query_embedding(self, query: str) -> List[float]:
        return self._hash_to_vec(query)


def _filter_kwargs(fn: Any, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the keyword arguments ``fn`` accepts."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return {}
    return {k: v for k, v in kwargs.items() if k in sig.parameters and v is not None}


def resolve_embedder(
    *,
    provider: str,
    model: str,
    dim: int,
    embed_config: Optional[Dict[str, Any]] = None,
) -> BaseEmbedding:
    """
    [职责] 根据 provider/model 构造 LlamaIndex BaseEmbedding 实例。
    [边界] provider 包按需导入；未知 provider 直接 ConfigurationError。
    [上游关系] QueryEmbedder.from_settings / 测试。
    [下游关系] QueryEmbedder.embed。
    """
    provider_key = str(provider).strip().lower()
    model_name = str(model).strip()
    cfg = embed_config or {}

    if provider_key in {"mock", "local", "hash"}:
        embedder: Any = HashEmbedding(dim=int(dim), model_name=model_name or "hash")
    elif provider_key == "openai":
        from llama_index.embeddings.openai import OpenAIEmbedding

        kwargs = {"model": model_name, "dimensions": int(dim), **cfg}
        embedder = OpenAIEmbedding(**_filter_kwargs(OpenAIEmbedding.__init__, kwargs))
    elif provider_key == "ollama":
        from llama_index.embeddings.ollama import OllamaEmbedding

        kwargs = {"model_name": model_name, **cfg}
        embedder = OllamaEmbedding(**_filter_kwargs(OllamaEmbedding.__init__, kwargs))
    elif provider_key in {"huggingface", "hf"}:
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding

        kwargs = {"model_name": model_name, **cfg}
        embedder = HuggingFaceEmbedding(**_filter_kwargs(HuggingFaceEmbedding.__init__, kwargs))
    else:
        raise ConfigurationError(
            message=f"unsupported embed provider: {provider}",
            detail={"provider": str(provider)},
        )

    if not isinstance(embedder, BaseEmbedding):
        raise TypeError("embedding must be BaseEmbedding")  # docstring: 强制 LlamaIndex 抽象
    return embedder


def verify_index_dimension(*, embed_dim: int, index_dim: int, collection: str = "") -> None:
    """
    [职责] 启动期检查：embedding 维度必须等于索引向量字段维度。
    [边界] 只比较整数；不连接任何服务。
    [上游关系] main.py lifespan 读取 Milvus schema 后调用。
    [下游关系] 不一致时抛 ConfigurationError，服务拒绝启动。
    """
    if int(embed_dim) != int(index_dim):
        raise ConfigurationError(
            message=f"embedding dim {int(embed_dim)} does not match index dim {int(index_dim)}",
            detail={"embed_dim": int(embed_dim), "index_dim": int(index_dim), "collection": collection},
        )


class QueryEmbedder:
    """
    [职责] 单条查询文本 -> 固定维度向量。
    [边界] 空文本是调用方错误（ValueError）；provider 失败映射为 ExternalDependencyError，不重试。
    [上游关系] chat_service。
    [下游关系] SimilarityIndexClient.query。
    """

    def __init__(self, embedder: BaseEmbedding, *, dim: int, provider: str = "custom") -> None:
        self._embedder = embedder
        self.dim = int(dim)
        self.provider = provider

    @classmethod
    def from_settings(cls, settings: Any) -> "QueryEmbedder":
        embedder = resolve_embedder(
            provider=settings.EMBED_PROVIDER,
            model=settings.EMBED_MODEL,
            dim=int(settings.EMBED_DIM),
        )
        return cls(embedder, dim=int(settings.EMBED_DIM), provider=str(settings.EMBED_PROVIDER))

    async def embed(self, text: str) -> List[float]:
        if not str(text or "").strip():
            raise ValueError("query text must be non-empty")
        try:
            raw = await self._embedder.aget_query_embedding(text)
        except Exception as exc:
            raise ExternalDependencyError(
                message="Failed to analyze the query.",
                detail={"stage": "embed", "provider": self.provider},
                cause=exc,
            ) from exc

        vector = [float(v) for v in raw]
        if len(vector) != self.dim:
            raise ExternalDependencyError(
                message="Failed to analyze the query.",
                detail={"stage": "embed", "expected_dim": self.dim, "actual_dim": len(vector)},
            )  # docstring: 运行期维度漂移同样视为依赖故障
        return vector
