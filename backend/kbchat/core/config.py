from __future__ import annotations

from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:5500,http://localhost:5500",
        alias="CORS_ORIGINS",
    )
    db_url: str = Field(default="sqlite+aiosqlite:///./kbchat.db", alias="DB_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    max_question_chars: int = Field(default=4000, alias="MAX_QUESTION_CHARS")

    memory_backend: str = Field(default="sql", alias="MEMORY_BACKEND")
    memory_key_prefix: str = Field(default="chat:memory:", alias="MEMORY_KEY_PREFIX")
    memory_max_messages: int = Field(default=10, alias="MEMORY_MAX_MESSAGES")
    memory_prompt_messages: int = Field(default=8, alias="MEMORY_PROMPT_MESSAGES")
    memory_temporary_ttl_sec: int = Field(default=60, alias="MEMORY_TEMPORARY_TTL_SEC")
    memory_persistent_ttl_sec: int = Field(
        default=7 * 24 * 3600, alias="MEMORY_PERSISTENT_TTL_SEC"
    )

    rag_default_top_k: int = Field(default=3, alias="RAG_DEFAULT_TOP_K")
    rag_max_top_k: int = Field(default=20, alias="RAG_MAX_TOP_K")
    rag_default_min_score: float = Field(default=0.60, alias="RAG_DEFAULT_MIN_SCORE")
    rag_score_margin: float = Field(default=0.10, alias="RAG_SCORE_MARGIN")
    rag_absolute_floor: float = Field(default=0.25, alias="RAG_ABSOLUTE_FLOOR")

    direct_min_score: float = Field(default=0.72, alias="DIRECT_MIN_SCORE")
    direct_margin: float = Field(default=0.08, alias="DIRECT_MARGIN")
    direct_mode: str = Field(default="raw", alias="DIRECT_MODE")

    default_model: str = Field(default="deepseek", alias="DEFAULT_MODEL")
    deepseek_api_key: str = Field(default="", alias="DEEPSEEK_API_KEY")
    deepseek_base_url: str = Field(default="https://api.deepseek.com", alias="DEEPSEEK_BASE_URL")
    deepseek_model: str = Field(default="deepseek-chat", alias="DEEPSEEK_MODEL")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    ollama_enabled: bool = Field(default=False, alias="OLLAMA_ENABLED")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")
    ollama_model: str = Field(default="llama3", alias="OLLAMA_MODEL")

    embed_provider: str = Field(default="deterministic", alias="EMBED_PROVIDER")
    embed_model: str = Field(default="deterministic-v1", alias="EMBED_MODEL")
    embed_dim: int = Field(default=64, alias="EMBED_DIM")
    embed_openai_api_key: str = Field(default="", alias="EMBED_OPENAI_API_KEY")

    chat_log_enabled: bool = Field(default=True, alias="CHAT_LOG_ENABLED")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]

    def prompt_window(self) -> int:
        """Return the prompt history window, never larger than the stored window."""

        return max(0, min(self.memory_prompt_messages, self.memory_max_messages))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
