import os
import re
from functools import lru_cache
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "settings.yaml"

# ${NAME} or ${NAME:-fallback}
ENV_REFERENCE = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')

load_dotenv(PROJECT_ROOT / ".env")


def expand_env(node):
    """Resolve environment references in every string of a parsed YAML tree."""
    if isinstance(node, dict):
        return {key: expand_env(child) for key, child in node.items()}
    if isinstance(node, list):
        return [expand_env(child) for child in node]
    if isinstance(node, str):
        return ENV_REFERENCE.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), node)
    return node


def read_config_file(path: Path) -> dict:
    """Parse a settings file; a missing file means all defaults."""
    if not path.is_file():
        return {}
    with path.open(encoding="utf-8") as handle:
        return expand_env(yaml.safe_load(handle) or {})


class GeminiSettings(BaseSettings):
    model: str = "gemini-2.5-flash"
    grounding_model: str = "gemini-2.5-flash"
    api_key: str | None = None
    timeout: float = Field(default=60.0, gt=0)  # seconds per remote call
    rate_limit: int = Field(default=15, ge=1)  # requests per minute


class RetrySettings(BaseSettings):
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.5, ge=0)


class HistorySettings(BaseSettings):
    capacity: int = Field(default=5, ge=1)
    backend: str = "sqlite"  # sqlite, redis, memory


class DatabaseSettings(BaseSettings):
    url: str = "sqlite:///./medidecode.db"


class RedisSettings(BaseSettings):
    url: str = "redis://localhost:6379/0"
    history_key: str = "medidecode:history"


class RateLimitingSettings(BaseSettings):
    """Adaptive throttling of Gemini calls."""
    adaptive_backoff: bool = True
    backoff_factor: float = Field(default=0.8, gt=0, le=1)
    recovery_threshold: int = Field(default=10, ge=1)


class PreprocessingSettings(BaseSettings):
    """Upload limits and image downscaling before analysis."""
    max_dimension: int = Field(default=2048, ge=64)
    jpeg_quality: int = Field(default=85, ge=1, le=95)
    preview_dimension: int = Field(default=512, ge=16)
    max_upload_mb: int = Field(default=25, ge=0)


class Settings(BaseSettings):
    gemini: GeminiSettings = GeminiSettings()
    retry: RetrySettings = RetrySettings()
    history: HistorySettings = HistorySettings()
    database: DatabaseSettings = DatabaseSettings()
    redis: RedisSettings = RedisSettings()
    rate_limiting: RateLimitingSettings = RateLimitingSettings()
    preprocessing: PreprocessingSettings = PreprocessingSettings()

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Build the application settings.

    Values come from config/settings.yaml (or the file named by
    MEDIDECODE_CONFIG) after ${VAR} expansion, so .env values reach
    the settings through the references in that file.
    """
    config_path = Path(os.environ.get("MEDIDECODE_CONFIG", DEFAULT_CONFIG_PATH))
    return Settings(**read_config_file(config_path))
