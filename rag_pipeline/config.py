"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- Provider connection parameters (Ollama, OpenAI, Gemini) and chain order
- Provider timeouts
- Data stores (PostgreSQL, Redis) and cache defaults
- Collection/session defaults (chunking, context window, temperature, top-k)
- Optional observability (Langfuse) and logging

Settings are built once by the entrypoint (HTTP app or CLI) and passed explicitly into
the components that need them; nothing in the core reads a module-level instance.
"""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_chain(raw: str) -> List[str]:
    return [p.strip().lower() for p in raw.split(",") if p.strip()]


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    Provider credentials are opaque here; adapters only check that the fields they
    need are present before first use.
    """
    # Data stores
    DATABASE_URL: str = "postgresql+psycopg2://rag_user:rag_pass@db:5432/rag_db"
    REDIS_URL: str = ""  # empty disables the query-embedding cache
    EMBEDDING_CACHE_TTL_SECONDS: int = 3600

    # Ollama (local inference)
    OLLAMA_BASE_URL: str = "http://ollama:11434"
    OLLAMA_CHAT_MODEL: str = "llama3.2:latest"
    OLLAMA_EMBEDDING_MODEL: str = "nomic-embed-text:latest"

    # OpenAI
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    OPENAI_ORGANIZATION: str = ""
    OPENAI_MODEL: str = "gpt-3.5-turbo"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"  # 1536 dims

    # Google Gemini
    GEMINI_API_KEY: str = Field(default="", description="Gemini API key")
    GEMINI_MODEL: str = "gemini-1.5-flash"
    GEMINI_EMBEDDING_MODEL: str = "text-embedding-004"

    # Fallback chains (comma separated provider names, tried left to right)
    EMBEDDING_CHAIN: str = "ollama,openai,gemini"
    CHAT_CHAIN: str = "ollama,openai,gemini"

    # Timeouts (seconds)
    PROBE_TIMEOUT_SECONDS: float = 5.0
    EMBED_TIMEOUT_SECONDS: float = 30.0
    CHAT_TIMEOUT_SECONDS: float = 30.0

    # Collection/session defaults
    DEFAULT_CHUNK_SIZE: int = 1000
    DEFAULT_CHUNK_OVERLAP: int = 200
    DEFAULT_RETRIEVAL_COUNT: int = 5
    DEFAULT_CONTEXT_WINDOW: int = 4000
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MODEL: str = "auto"
    MAX_OUTPUT_TOKENS: int = 2048
    HISTORY_MESSAGES: int = 10

    # Observability (optional)
    LANGFUSE_HOST: str = ""
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    LOG_LEVEL: str = "INFO"

    # Derived
    @property
    def EMBEDDING_CHAIN_ORDER(self) -> List[str]:
        """Provider names for embedding calls, in fallback order."""
        return _split_chain(self.EMBEDDING_CHAIN)

    @property
    def CHAT_CHAIN_ORDER(self) -> List[str]:
        """Provider names for chat calls, in fallback order."""
        return _split_chain(self.CHAT_CHAIN)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings for process entrypoints (HTTP app startup, CLI main)."""
    return Settings()
