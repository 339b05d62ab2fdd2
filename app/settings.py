import os
from pydantic import BaseModel, ConfigDict
from functools import lru_cache
from dotenv import load_dotenv
load_dotenv()


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    APP_NAME: str = os.getenv("APP_NAME", "AI CV & Project Evaluator")
    ENV: str = os.getenv("ENV", "development")
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", "storage")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str | None = os.getenv("LOG_FILE") or None
    SQLITE_PATH: str = os.getenv("SQLITE_PATH", "app.sqlite3")
    MAX_FILE_SIZE: int = int(os.getenv("MAX_FILE_SIZE", str(10 * 1024 * 1024)))

    QDRANT_URL: str = os.getenv("QDRANT_URL", "http://localhost:6333")
    QDRANT_API_KEY: str | None = os.getenv("QDRANT_API_KEY") or None
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY") or None
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENROUTER_API_KEY: str | None = os.getenv("OPENROUTER_API_KEY") or None
    OPENROUTER_BASE_URL: str = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    PRIMARY_MODEL: str = os.getenv("PRIMARY_MODEL", "gpt-4o")
    FAST_MODEL: str = os.getenv("FAST_MODEL", "gpt-4o-mini")
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
    LLM_MAX_ATTEMPTS: int = int(os.getenv("LLM_MAX_ATTEMPTS", "3"))

    SAFETY_SCREENING_ENABLED: bool = _bool("SAFETY_SCREENING_ENABLED")
    MODERATION_MODEL: str = os.getenv("MODERATION_MODEL", "omni-moderation-latest")

    QUEUE_CONCURRENCY: int = int(os.getenv("QUEUE_CONCURRENCY", "5"))
    JOB_TIMEOUT_SECONDS: float = float(os.getenv("JOB_TIMEOUT_SECONDS", "300"))
    QUEUE_MAX_DELIVERIES: int = int(os.getenv("QUEUE_MAX_DELIVERIES", "2"))


@lru_cache
def get_settings() -> Settings:
    return Settings()
