"""Process configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from TRACKER_* environment variables (or .env file)."""

    # --- App ---
    app_name: str = "tracker-data"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # --- Storage ---
    data_dir: Path = Path("data")  # root of the file register

    # --- HTTP ---
    user_agent: str = "tracker-data/0.1 (+https://github.com/geo-systems/tracker-data)"
    http_timeout_s: float = 30.0

    # --- Vendors ---
    coingecko_api_key: str = ""  # optional demo key; raises the rate limit

    # --- Sync ---
    sync_config_path: Path | None = None  # override for the bundled sync_config.yaml

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "TRACKER_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
