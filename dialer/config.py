from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_prefix": "DIALER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # Check file (YAML) and SQLite datastore
    config_path: str = "checks.yaml"
    db_path: str = "checks.db"

    # Tick interval; the check file's `interval` wins when present
    interval_seconds: float = 5.0
    max_concurrency: int = 0  # 0 = one task per check, no cap

    # ICMP: raw sockets need root / CAP_NET_RAW, unprivileged needs ping_group_range
    ping_privileged: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    html_dir: str = "html"

    # Logging
    log_level: str = "INFO"


settings = Settings()
