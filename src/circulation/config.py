"""Configuration management for circulation.

Loads configuration from environment variables and provides defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Lending
    loan_period_days: int
    lock_timeout: float  # seconds

    # History
    default_page_size: int
    max_page_size: int

    # Logging
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "CIRCULATION_DB_PATH",
            str(Path.home() / ".circulation" / "library.db"),
        )
        db_path = Path(db_path_str).expanduser()

        return cls(
            db_path=db_path,
            loan_period_days=int(os.environ.get("CIRCULATION_LOAN_DAYS", "14")),
            lock_timeout=float(os.environ.get("CIRCULATION_LOCK_TIMEOUT", "5.0")),
            default_page_size=int(os.environ.get("CIRCULATION_PAGE_SIZE", "20")),
            max_page_size=int(os.environ.get("CIRCULATION_MAX_PAGE_SIZE", "100")),
            log_level=os.environ.get("CIRCULATION_LOG_LEVEL", "WARNING").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.loan_period_days <= 0:
            errors.append("Loan period must be at least one day")
        if self.lock_timeout <= 0:
            errors.append("Lock timeout must be positive")
        if self.max_page_size < 1:
            errors.append("Maximum page size must be at least 1")
        if not 1 <= self.default_page_size <= self.max_page_size:
            errors.append(
                f"Default page size must be between 1 and {self.max_page_size}"
            )
        if not isinstance(logging.getLevelName(self.log_level), int):
            errors.append(f"Unknown log level: {self.log_level}")

        # Check database directory is writable
        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        return errors


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
