"""Runtime configuration read from the environment."""

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel

from .domain.models import AIModel

# Gemini model backing each response profile
GEMINI_MODELS = {
    AIModel.PRO: "gemini-1.5-pro",
    AIModel.FAST: "gemini-1.5-flash",
}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Engine settings."""

    generator: str = "canned"  # "canned" or "gemini"
    gemini_api_key: Optional[str] = None
    default_model: AIModel = AIModel.PRO
    stream_words_per_chunk: int = 3
    stream_first_delay: float = 0.7  # seconds before the first fragment
    stream_interval: float = 0.016  # seconds between fragments
    seed_demo: bool = False
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from FLEXAI_* and GEMINI_API_KEY variables."""
        return cls(
            generator=os.getenv("FLEXAI_GENERATOR", "canned").strip().lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            default_model=AIModel(os.getenv("FLEXAI_DEFAULT_MODEL", AIModel.PRO.value)),
            stream_words_per_chunk=int(os.getenv("FLEXAI_STREAM_WORDS_PER_CHUNK", "3")),
            stream_first_delay=float(os.getenv("FLEXAI_STREAM_FIRST_DELAY", "0.7")),
            stream_interval=float(os.getenv("FLEXAI_STREAM_INTERVAL", "0.016")),
            seed_demo=_env_flag("FLEXAI_SEED_DEMO"),
            log_level=os.getenv("FLEXAI_LOG_LEVEL", "INFO").upper(),
            json_logs=_env_flag("FLEXAI_JSON_LOGS"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process settings, read once."""
    return Settings.from_env()
