import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Usage ledger persistence (in-memory when unset)
    DATABASE_URL: Optional[str] = None

    # Upstream generative service
    GROQ_API_KEY: Optional[str] = None
    AI_MODEL: str = "llama-3.1-8b-instant"
    AI_TEMPERATURE: float = 1.0
    AI_MAX_TOKENS: int = 2048
    AI_COST_PER_TOKEN: float = 0.000001

    # Quotas
    AI_ANSWER_QUOTA_PER_QUESTION: int = 3
    AI_QUESTION_QUOTA_PER_DAY: int = 10

    # Similar questions
    SIMILAR_CANDIDATE_FETCH_LIMIT: int = 100
    SIMILAR_PROMPT_CANDIDATES: int = 20

    # WebSocket
    WS_MAX_MESSAGE_BYTES: int = 4096
    WS_OUTBOUND_QUEUE_SIZE: int = 256

    # App
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("anonqa")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "GROQ_API_KEY",
    ]
    if (getattr(cfg, "ENV", "") or "").lower() == "production":
        required_keys.append("DATABASE_URL")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
