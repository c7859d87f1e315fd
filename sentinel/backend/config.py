"""Sentinel — Application Configuration."""

import json
import logging
from pathlib import Path
from pydantic_settings import BaseSettings

_cfg_logger = logging.getLogger("sentinel.config")

CREDENTIALS_PATH = Path(__file__).resolve().parent.parent / "credentials.json"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    app_name: str = "Sentinel"
    app_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 8787
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # API Keys (missing keys disable the dependent endpoints, not the process)
    serper_api_key: str = ""
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"

    # Models
    reasoning_model: str = "gpt-4o"
    reasoning_fallback_model: str = "gpt-4o-mini"
    live_model: str = "o1"
    prefilter_model: str = "gpt-4o-mini"
    fallback_models: list[str] = ["gpt-4o-mini", "gpt-4.1-mini", "o1-mini"]

    # Ingestion scheduler (seconds)
    poll_interval: int = 300
    scheduler_enabled: bool = True

    # Upstream timeouts (seconds)
    search_timeout: float = 20.0
    reasoning_timeout: float = 60.0
    live_search_timeout: float = 6.0
    live_fallback_search_timeout: float = 4.0
    live_parse_timeout: float = 8.0

    max_raw_items: int = 80

    model_config = {"env_file": ".env", "env_prefix": "SENTINEL_"}


def load_settings(credentials_path: Path = CREDENTIALS_PATH) -> Settings:
    """Load settings, supplementing missing API keys from credentials.json."""
    s = Settings()

    if credentials_path.exists():
        try:
            creds = json.loads(credentials_path.read_text(encoding="utf-8"))

            if not s.serper_api_key:
                s.serper_api_key = creds.get("serper_api_key", "")
                if s.serper_api_key:
                    _cfg_logger.info("Serper credentials loaded from %s", credentials_path.name)

            if not s.openai_api_key:
                s.openai_api_key = creds.get("openai_api_key", "")
                if s.openai_api_key:
                    _cfg_logger.info("Reasoning credentials loaded from %s", credentials_path.name)
        except (OSError, ValueError, AttributeError) as e:
            _cfg_logger.warning("Failed to read %s: %s", credentials_path.name, e)

    return s


settings = load_settings()
