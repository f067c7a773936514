from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """
    Global application-level configuration.

    This class is the single source of truth for:
    - environment selection
    - logging behavior
    - ledger database locations
    - read/write gate behavior
    """

    model_config = SettingsConfigDict(
        env_prefix="TRADELEDGER_",
        env_file=".env",
        extra="ignore",
    )

    # ---- Environment -------------------------------------------------

    env: Literal["local", "staging", "prod"] = "local"

    # ---- Logging -----------------------------------------------------

    log_level: str = "INFO"

    # ---- Storage -----------------------------------------------------

    # Root directory holding one SQLite file per user ledger
    data_dir: Path = Field(
        default=Path("data"),
        description="Root directory for per-user ledger databases",
    )

    sqlite_journal_mode: Literal["WAL", "DELETE", "TRUNCATE", "MEMORY"] = Field(
        default="WAL",
        description="SQLite journal mode applied on every connection",
    )

    # ---- Concurrency -------------------------------------------------

    # None waits forever (no operation defines a timeout by default)
    lock_timeout_s: float | None = Field(
        default=None,
        gt=0,
        description="Optional timeout for acquiring a ledger read/write gate",
    )

    # ---- Queries -----------------------------------------------------

    default_page_limit: int = Field(
        default=100,
        gt=0,
        description="Page size used by the entries endpoint when none is given",
    )


# Singleton settings object
settings = LedgerSettings()
