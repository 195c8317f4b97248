"""Configuration for the payroll engine, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./npo_payroll.db"
# Package data, independent of the working directory
DEFAULT_TAX_TABLE_PATH = (
    Path(__file__).resolve().parent / "data" / "tax_tables" / "simplified_tax_table.json"
)


@dataclass(frozen=True)
class Settings:
    """Application settings.

    ``default_row_count`` is the number of blank rows a period opens with;
    ``row_growth_step`` is the spare capacity kept after the loaded drafts.
    """

    database_url: str
    tax_table_path: Path
    default_row_count: int
    row_growth_step: int
    host: str
    port: int
    debug: bool
    log_level: str

    def __post_init__(self) -> None:
        if self.default_row_count < 1:
            raise ValueError(f"NPO_DEFAULT_ROW_COUNT must be positive, got {self.default_row_count}")
        if self.row_growth_step < 0:
            raise ValueError(f"NPO_ROW_GROWTH_STEP must not be negative, got {self.row_growth_step}")

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from environment variables and an optional ``.env`` file."""
        load_dotenv()

        env = os.environ
        return cls(
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            tax_table_path=Path(env.get("NPO_TAX_TABLE_PATH", DEFAULT_TAX_TABLE_PATH)),
            default_row_count=int(env.get("NPO_DEFAULT_ROW_COUNT", "20")),
            row_growth_step=int(env.get("NPO_ROW_GROWTH_STEP", "5")),
            host=env.get("HOST", "127.0.0.1"),
            port=int(env.get("PORT", "8000")),
            debug=env.get("DEBUG", "false").lower() in ("1", "true", "yes"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
