# src/mystery_kb_rag/config.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


def _find_repo_root(start: Path) -> Path:
    """
    Best-effort repository root discovery.
    - Prefer the closest ancestor containing `pyproject.toml`.
    - Fallback to filesystem root if not found.
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

# .env feeds Settings only; provider credentials reach SDKs via ProviderConfig/EmbeddingConfig.
load_dotenv(str(REPO_ROOT / ".env"), override=False)

LOCAL_ROOT = REPO_ROOT / ".Local"


class Settings(BaseSettings):
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Prefer repo root by default; override via .env if needed.
    PROJECT_ROOT: str = str(REPO_ROOT)

    MYSTERY_KB_RAG_DATABASE_URL: str = f"sqlite+aiosqlite:///{(LOCAL_ROOT / 'mystery_kb_rag.db').as_posix()}"

    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_BASE: Optional[str] = "https://api.openai.com/v1"
    DASHSCOPE_API_KEY: Optional[str] = None

    # Per-purpose chat model selection: {PURPOSE}_PROVIDER / _MODEL / _BASE_URL / _API_KEY
    INTENT_PROVIDER: str = "openai"
    INTENT_MODEL: str = "gpt-4o"
    INTENT_BASE_URL: Optional[str] = None
    INTENT_API_KEY: Optional[str] = None
    INTENT_STRUCTURED_OUTPUT: str = "auto"

    CHAT_PROVIDER: str = "openai"
    CHAT_MODEL: str = "gpt-4o"
    CHAT_BASE_URL: Optional[str] = None
    CHAT_API_KEY: Optional[str] = None
    CHAT_STRUCTURED_OUTPUT: str = "auto"

    EMBEDDING_PROVIDER: str = "openai"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = int(1536)
    EMBEDDING_BASE_URL: Optional[str] = None
    EMBEDDING_API_KEY: Optional[str] = None

    OLLAMA_REQUEST_TIMEOUT_S: int = int(120)

    RETRIEVAL_RRF_K: int = int(60)
    SEMANTIC_MATCH_COUNT: int = int(10)
    SEMANTIC_MATCH_THRESHOLD: float = float(0.5)

    # Upper bound for one pipeline invocation; unset means no deadline.
    PIPELINE_DEADLINE_S: Optional[float] = None

    @property
    def project_root(self) -> Path:
        if not self.PROJECT_ROOT:
            raise RuntimeError("PROJECT_ROOT is not set. Please set PROJECT_ROOT in your .env file.")
        return Path(self.PROJECT_ROOT).resolve()

    model_config = SettingsConfigDict(
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
