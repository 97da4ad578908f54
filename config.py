"""
config.py
---------
Centralised configuration management for the table sync tool.

Loads settings from environment variables (with .env file support via
python-dotenv). Provides typed settings as frozen dataclasses so
configuration is immutable at runtime.

The source database ("DB1") and target database ("DB2") are configured
independently through ``DB1_*`` / ``DB2_*`` variables; charset, timeout
and pool size are shared.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for one side of the transfer."""
    host: str = "localhost"
    port: int = 3306
    user: str = ""
    password: str = ""
    database: str = ""
    charset: str = field(default_factory=lambda: os.getenv("DB_CHARSET", "utf8mb4"))
    connect_timeout: int = field(default_factory=lambda: _env_int("DB_CONNECT_TIMEOUT", 60))
    pool_size: int = field(default_factory=lambda: _env_int("DB_POOL_SIZE", 10))

    @classmethod
    def from_env(cls, prefix: str) -> "DatabaseConfig":
        """Build settings from ``<prefix>_HOST``, ``<prefix>_PORT`` etc."""
        return cls(
            host=os.getenv(f"{prefix}_HOST", "localhost"),
            port=_env_int(f"{prefix}_PORT", 3306),
            user=os.getenv(f"{prefix}_USER", ""),
            password=os.getenv(f"{prefix}_PASSWORD", ""),
            database=os.getenv(f"{prefix}_DATABASE", ""),
        )

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def __repr__(self) -> str:
        # Password omitted so configs can be logged.
        return (
            f"DatabaseConfig(host={self.host!r}, port={self.port}, "
            f"user={self.user!r}, database={self.database!r})"
        )


@dataclass(frozen=True)
class SyncConfig:
    """Copy / sync engine settings."""
    batch_size: int = field(default_factory=lambda: _env_int("SYNC_BATCH_SIZE", 1000))
    chunk_size: int = field(default_factory=lambda: _env_int("COPY_CHUNK_SIZE", 1000))
    batch_delay_ms: int = field(default_factory=lambda: _env_int("SYNC_BATCH_DELAY_MS", 10))
    backup_batch_size: int = field(
        default_factory=lambda: _env_int("BACKUP_BATCH_SIZE", 10000)
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    log_file: str | None = field(
        default_factory=lambda: os.getenv("LOG_FILE")  # None → log to stderr only
    )

    @property
    def batch_delay(self) -> float:
        """Inter-batch pause in seconds."""
        return self.batch_delay_ms / 1000.0


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration."""
    source: DatabaseConfig = field(default_factory=lambda: DatabaseConfig.from_env("DB1"))
    target: DatabaseConfig = field(default_factory=lambda: DatabaseConfig.from_env("DB2"))
    sync: SyncConfig = field(default_factory=SyncConfig)
    app_name: str = "MySQL Table Sync"
    app_version: str = "1.0.0"


def load_config() -> AppConfig:
    """
    Build and return the application configuration.

    Returns:
        AppConfig: Fully populated (and frozen) configuration object.

    Example::

        cfg = load_config()
        print(cfg.source.host)       # "localhost"
        print(cfg.sync.batch_size)   # 1000
    """
    return AppConfig()


# Module-level singleton used throughout the application
CONFIG: AppConfig = load_config()


def get_log_level() -> int:
    """Convert string log level from config to logging module constant."""
    level = getattr(logging, CONFIG.sync.log_level, None)
    if not isinstance(level, int):
        return logging.INFO
    return level
