"""Configuration management using Pydantic settings"""

import platform
import os
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import Optional


def get_default_storage_path() -> str:
    """
    Get OS-specific default storage path for the storefront client.

    Returns:
        - macOS: ~/Library/Application Support/HotspotStorefront
        - Linux: ~/.local/share/hotspot-storefront
        - Windows: %APPDATA%/HotspotStorefront
    """
    system = platform.system()
    home = Path.home()

    if system == "Darwin":  # macOS
        return str(home / "Library" / "Application Support" / "HotspotStorefront")
    elif system == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return str(Path(appdata) / "HotspotStorefront")
        return str(home / "AppData" / "Roaming" / "HotspotStorefront")
    else:  # Linux and others
        # Follow XDG Base Directory specification
        xdg_data = os.environ.get("XDG_DATA_HOME")
        if xdg_data:
            return str(Path(xdg_data) / "hotspot-storefront")
        return str(home / ".local" / "share" / "hotspot-storefront")


class Settings(BaseSettings):
    """Application settings"""

    # Activation gateway (the hotspot backend)
    GATEWAY_BASE_URL: str = "https://ivyinex.onrender.com"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # Payment reconciliation
    POLL_INTERVAL_SECONDS: float = 3.0
    MAX_POLLS: int = 100
    PAYMENT_TIMEOUT_SECONDS: float = 300.0

    # Package catalog fetch
    CATALOG_MAX_RETRIES: int = 3

    # Durable client state (pending payment records)
    STORAGE_DIR: str = get_default_storage_path()
    PENDING_PAYMENTS_DIR: Optional[str] = None

    # Storefront web surface
    SESSION_COOKIE_NAME: str = "sid"
    MAX_SESSIONS: int = 1000
    SESSION_IDLE_TIMEOUT_SECONDS: float = 1800.0

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    def model_post_init(self, __context) -> None:
        """Initialize derived paths after model creation"""
        if self.PENDING_PAYMENTS_DIR is None:
            object.__setattr__(
                self, 'PENDING_PAYMENTS_DIR', str(Path(self.STORAGE_DIR) / "pending")
            )

    def create_directories(self):
        """Create necessary directories"""
        for dir_path in [self.STORAGE_DIR, self.PENDING_PAYMENTS_DIR]:
            if dir_path:
                Path(dir_path).mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
