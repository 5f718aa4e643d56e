"""
Logger configuration, built in code or from the environment.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

_TRUE = ("1", "true", "yes")


@dataclass(frozen=True)
class LoggerConfig:
    """
    Configuration for the chatcore logger tree.

    ``console_format`` selects the console formatter: ``plain`` for local
    development, ``json`` when the process runs behind a log shipper.
    """

    level: str = "INFO"
    console: bool = True
    console_format: str = "plain"
    # Rotating JSON file is only attached when log_dir is set
    log_dir: Optional[str] = None
    log_file_basename: str = "chatcore"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 5
    root_name: str = "chatcore"

    @classmethod
    def from_env(cls) -> "LoggerConfig":
        """Build config from LOG_* environment variables."""
        console_format = os.environ.get("LOG_FORMAT", "plain").strip().lower()
        if console_format not in ("plain", "json"):
            console_format = "plain"
        return cls(
            level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            console=os.environ.get("LOG_CONSOLE", "true").lower() in _TRUE,
            console_format=console_format,
            log_dir=os.environ.get("LOG_DIR") or None,
            log_file_basename=os.environ.get("LOG_FILE_BASENAME", "chatcore"),
            max_bytes=int(os.environ.get("LOG_MAX_BYTES", "5242880")),
            backup_count=int(os.environ.get("LOG_BACKUP_COUNT", "5")),
            root_name=os.environ.get("LOG_ROOT_NAME", "chatcore") or "chatcore",
        )
