from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AVSCAN_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = "AV Scan API"
    app_version: str = "1.0.0"

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    upload_dir: Path = Path("uploads")
    max_upload_bytes: int | None = None

    # Overrides the per-platform lookup (CLAMAV_PATH in older deployments).
    scanner_path: str | None = None
    scan_timeout_seconds: float | None = 300.0
    max_concurrent_scans: int | None = None

    @property
    def scan_timeout(self) -> float | None:
        if self.scan_timeout_seconds is None or self.scan_timeout_seconds <= 0:
            return None
        return self.scan_timeout_seconds


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
