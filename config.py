"""Configuration management using Pydantic settings"""

import platform
import os
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_DIR_NAME = "SubscriptionBilling"


def get_default_storage_path() -> str:
    """
    Get OS-specific default storage path for the local subscription cache.

    Returns:
        - macOS: ~/Library/Application Support/SubscriptionBilling
        - Linux: ~/.local/share/subscription-billing
        - Windows: %APPDATA%/SubscriptionBilling
    """
    system = platform.system()
    home = Path.home()

    if system == "Darwin":  # macOS
        return str(home / "Library" / "Application Support" / APP_DIR_NAME)
    elif system == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return str(Path(appdata) / APP_DIR_NAME)
        return str(home / "AppData" / "Roaming" / APP_DIR_NAME)
    else:  # Linux and others
        # Follow XDG Base Directory specification
        xdg_data = os.environ.get("XDG_DATA_HOME")
        if xdg_data:
            return str(Path(xdg_data) / "subscription-billing")
        return str(home / ".local" / "share" / "subscription-billing")


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Backend
    API_BASE_URL: str = "http://localhost:5000/api"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Local persisted state
    STORAGE_DIR: str = get_default_storage_path()
    CACHE_FILE_NAME: str = "cachedSubscription.json"
    CACHE_ENCRYPTION_KEY: Optional[str] = None

    # Display re-check for grace/overdue phases
    PHASE_RECHECK_INTERVAL_SECONDS: float = 60.0

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """Paths are joined with a leading slash, so drop any trailing one."""
        return value.strip().rstrip("/")

    @field_validator("REQUEST_TIMEOUT_SECONDS", "PHASE_RECHECK_INTERVAL_SECONDS")
    @classmethod
    def must_be_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @property
    def cache_path(self) -> Path:
        """Full path of the single-slot subscription cache file"""
        return Path(self.STORAGE_DIR) / self.CACHE_FILE_NAME

    def get_storage_info(self) -> dict:
        """Get storage path information for diagnostics"""
        return {
            "storage_path": self.STORAGE_DIR,
            "default_path": get_default_storage_path(),
            "is_default": self.STORAGE_DIR == get_default_storage_path(),
            "cache_file": str(self.cache_path),
            "cache_encrypted": bool(self.CACHE_ENCRYPTION_KEY),
            "platform": platform.system(),
        }


# Global settings instance
settings = Settings()
