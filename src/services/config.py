"""
Loads and handles config from config.yml
Values can be overridden by environment variables (and .env) of the same name
"""
import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


class DeduplicationSettings(BaseModel):
    """Tunable thresholds for story deduplication."""
    enabled: bool = True
    similarity_threshold: float = Field(default=0.85, ge=-1.0, le=1.0)
    borderline_lower: float = Field(default=0.70, ge=-1.0, le=1.0)
    borderline_upper: float = Field(default=0.85, ge=-1.0, le=1.0)
    max_arbitrations: int = Field(default=10, ge=0)
    content_preview_chars: int = Field(default=200, ge=0)
    min_batch_size: int = Field(default=5, ge=0)  # batches this small are passed through
    source_reliability: Dict[str, int] = {}

    @model_validator(mode="after")
    def _check_band(self) -> "DeduplicationSettings":
        if self.borderline_lower > self.borderline_upper:
            raise ValueError(
                f"borderline_lower ({self.borderline_lower}) must not exceed "
                f"borderline_upper ({self.borderline_upper})"
            )
        return self


class Config(BaseModel):
    # Core
    DATABASE_PATH: str = "data/dedup.db"
    LOG_LEVEL: str = "INFO"

    # Ollama
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1:8b"
    EMBEDDING_MODEL: str = "nomic-embed-text"

    # Timeouts (seconds)
    EMBEDDING_TIMEOUT_SECONDS: float = 60.0
    ARBITRATION_TIMEOUT_SECONDS: float = 30.0
    CACHE_TIMEOUT_SECONDS: float = 5.0

    # Embedding cache
    EMBEDDING_CACHE_ENABLED: bool = True
    EMBEDDING_CACHE_TTL_DAYS: int = 7

    deduplication: DeduplicationSettings = DeduplicationSettings()


_ENV_KEYS = (
    "DATABASE_PATH",
    "LOG_LEVEL",
    "OLLAMA_BASE_URL",
    "OLLAMA_MODEL",
    "EMBEDDING_MODEL",
    "EMBEDDING_TIMEOUT_SECONDS",
    "ARBITRATION_TIMEOUT_SECONDS",
    "CACHE_TIMEOUT_SECONDS",
    "EMBEDDING_CACHE_ENABLED",
    "EMBEDDING_CACHE_TTL_DAYS",
)


def _bool(value: str | bool) -> bool:
    """Convert string or bool to boolean."""
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes", "on")


def _get_config_path() -> Optional[str]:
    """Get the path to config.yml, handling different working directories."""
    env_path = os.getenv("DEDUP_CONFIG_PATH")
    if env_path:
        return env_path

    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    return None


def _parse_dedup_settings(data: Dict[str, Any]) -> DeduplicationSettings:
    """Parse the deduplication section from YAML data."""
    return DeduplicationSettings(
        enabled=_bool(data.get("enabled", True)),
        similarity_threshold=float(data.get("similarity_threshold", 0.85)),
        borderline_lower=float(data.get("borderline_lower", 0.70)),
        borderline_upper=float(data.get("borderline_upper", 0.85)),
        max_arbitrations=int(data.get("max_arbitrations", 10)),
        content_preview_chars=int(data.get("content_preview_chars", 200)),
        min_batch_size=int(data.get("min_batch_size", 5)),
        source_reliability={
            str(source): int(weight)
            for source, weight in (data.get("source_reliability") or {}).items()
        },
    )


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from config.yml, then apply environment overrides."""
    load_dotenv()

    config_path = path or _get_config_path()
    data: Dict[str, Any] = {}
    if config_path and os.path.exists(config_path):
        with open(config_path, 'r') as file:
            data = yaml.safe_load(file) or {}
    else:
        logger.warning(f"No config file found ({config_path or 'resources/config.yml'}), using defaults")

    for key in _ENV_KEYS:
        if os.getenv(key) is not None:
            data[key] = os.getenv(key)

    defaults = Config()
    dedup = data.get("deduplication") or {}
    if _bool(os.getenv("ENABLE_STORY_DEDUP", dedup.get("enabled", True))) is False:
        dedup = {**dedup, "enabled": False}

    return Config(
        DATABASE_PATH=data.get("DATABASE_PATH", defaults.DATABASE_PATH),
        LOG_LEVEL=str(data.get("LOG_LEVEL", defaults.LOG_LEVEL)).upper(),

        OLLAMA_BASE_URL=data.get("OLLAMA_BASE_URL", defaults.OLLAMA_BASE_URL),
        OLLAMA_MODEL=data.get("OLLAMA_MODEL", defaults.OLLAMA_MODEL),
        EMBEDDING_MODEL=data.get("EMBEDDING_MODEL", defaults.EMBEDDING_MODEL),

        EMBEDDING_TIMEOUT_SECONDS=float(data.get("EMBEDDING_TIMEOUT_SECONDS", defaults.EMBEDDING_TIMEOUT_SECONDS)),
        ARBITRATION_TIMEOUT_SECONDS=float(data.get("ARBITRATION_TIMEOUT_SECONDS", defaults.ARBITRATION_TIMEOUT_SECONDS)),
        CACHE_TIMEOUT_SECONDS=float(data.get("CACHE_TIMEOUT_SECONDS", defaults.CACHE_TIMEOUT_SECONDS)),

        EMBEDDING_CACHE_ENABLED=_bool(data.get("EMBEDDING_CACHE_ENABLED", defaults.EMBEDDING_CACHE_ENABLED)),
        EMBEDDING_CACHE_TTL_DAYS=int(data.get("EMBEDDING_CACHE_TTL_DAYS", defaults.EMBEDDING_CACHE_TTL_DAYS)),

        deduplication=_parse_dedup_settings(dedup),
    )
