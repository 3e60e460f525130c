"""Application configuration via environment variables."""

import os
from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Proxy connection
    resource_name: str = ""
    kachery_zone: Optional[str] = None
    proxy_url: str = ""
    proxy_secret: str = ""

    # Uploads
    max_concurrent_uploads: int = 0
    upload_command: str = "kachery-cloud-store"
    kachery_cloud_dir: str = Field(
        default_factory=lambda: os.path.join(os.path.expanduser("~"), ".kachery-cloud")
    )

    # Connection lifetime
    keepalive_startup_delay_sec: float = 10.0
    keepalive_interval_sec: float = 20.0
    reconnect_delay_sec: float = 30.0

    # Local status API
    status_host: str = "127.0.0.1"
    status_port: int = 8020

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
