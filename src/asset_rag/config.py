# src/asset_rag/config.py
from __future__ import annotations

import os
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

from asset_rag.backend.utils.constants import (
    DEFAULT_ELIGIBLE_STATUS,
    DEFAULT_RANK_ALPHA,
    DEFAULT_RATE_LIMIT_MAX_REQUESTS,
    DEFAULT_RATE_LIMIT_WINDOW_MS,
    DEFAULT_RESULT_TOP_N,
    DEFAULT_VECTOR_TOP_K,
)


def _find_repo_root(start: Path) -> Path:
    """
    Best-effort repository root discovery.
    - Prefer the closest ancestor containing `pyproject.toml`.
    - Fallback to the start directory if not found.
    """
    cur = start.resolve()
    for _ in range(20):
        if (cur / "pyproject.toml").exists():
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent
    return start.resolve()


PACKAGE_ROOT = Path(__file__).resolve().parent
REPO_ROOT = _find_repo_root(PACKAGE_ROOT)

# Load .env into process environment early so downstream SDKs can read it.
load_dotenv(str(REPO_ROOT / ".env"), override=False)

DATA_ROOT = REPO_ROOT / ".Local"


class Settings(BaseSettings):
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    PROJECT_ROOT: str = str(REPO_ROOT)

    ASSET_RAG_DATABASE_URL: str = f"sqlite+aiosqlite:///{DATA_ROOT / 'asset_rag.db'}"

    MILVUS_URI: str = "http://localhost:19530"
    MILVUS_TOKEN: str | None = None
    MILVUS_COLLECTION: str = "brand_assets"
    MILVUS_METRIC_TYPE: str = "COSINE"
    VERIFY_INDEX_DIM_ON_STARTUP: bool = True

    # Query embedding; must match the dimension the ingestion side indexed with.
    EMBED_PROVIDER: str = "openai"
    EMBED_MODEL: str = "text-embedding-3-small"
    EMBED_DIM: int = int(1536)

    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = "models/gemini-2.0-flash"
    LLM_TEMPERATURE: float = 0.7
    LLM_TOP_K: int = int(40)
    LLM_TOP_P: float = 0.95
    LLM_TIMEOUT_S: int = int(60)

    RATE_LIMIT_MAX_REQUESTS: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS
    RATE_LIMIT_WINDOW_MS: int = DEFAULT_RATE_LIMIT_WINDOW_MS

    VECTOR_TOP_K: int = DEFAULT_VECTOR_TOP_K
    RESULT_TOP_N: int = DEFAULT_RESULT_TOP_N
    RANK_ALPHA: float = DEFAULT_RANK_ALPHA
    RECENCY_WINDOW_DAYS: int = int(3 * 365)
    ELIGIBLE_STATUS: str = DEFAULT_ELIGIBLE_STATUS

    OPENAI_API_KEY: str | None = None
    OPENAI_API_BASE: str | None = "https://api.openai.com/v1"

    GOOGLE_API_KEY: str | None = None

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_REQUEST_TIMEOUT_S: int = int(120)

    @property
    def project_root(self) -> Path:
        if not self.PROJECT_ROOT:
            raise RuntimeError("PROJECT_ROOT is not set. Please set PROJECT_ROOT in your .env file.")
        return Path(self.PROJECT_ROOT).resolve()

    @property
    def recency_window_ms(self) -> int:
        return int(self.RECENCY_WINDOW_DAYS) * 24 * 60 * 60 * 1000

    model_config = SettingsConfigDict(
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()


def _set_env_if_missing(key: str, value: str | None) -> None:
    """
    Keep provider SDKs working with .env-based Settings by exporting to os.environ.
    Do not override explicitly provided environment variables.
    """
    if value is None:
        return
    raw = str(value).strip()
    if not raw:
        return
    if os.getenv(key):
        return
    os.environ[key] = raw


def _bootstrap_provider_env(s: Settings) -> None:
    _set_env_if_missing("OPENAI_API_KEY", s.OPENAI_API_KEY)
    _set_env_if_missing("OPENAI_API_BASE", s.OPENAI_API_BASE)
    _set_env_if_missing("GOOGLE_API_KEY", s.GOOGLE_API_KEY)


_bootstrap_provider_env(settings)
