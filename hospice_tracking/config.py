"""
Configuration management for the delivery tracking service.
Handles loading settings from environment variables and config files.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
from dotenv import load_dotenv


@dataclass
class TrackingConfig:
    """Main configuration class for the tracking service."""

    # === External Tracking Provider ===
    tracking_api_key: str = ""
    tracking_api_url: str = "https://api.17track.net/track/v2.4"
    request_timeout: float = 15.0  # seconds
    registration_delay: float = 0.2  # seconds between bulk registrations

    # Webhook
    webhook_secret: str = ""

    # === Storage ===
    database_url: str = "sqlite:///./hospice_tracking.db"

    # === HTTP Server ===
    server_host: str = "0.0.0.0"
    server_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_file: str = "./logs/tracking.log"

    @property
    def api_configured(self) -> bool:
        return bool(self.tracking_api_key)

    @property
    def signature_required(self) -> bool:
        return bool(self.webhook_secret)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "TrackingConfig":
        """Load configuration from environment variables."""

        # Try to load from .env file
        if env_file:
            load_dotenv(env_file)
        else:
            # Try common locations
            for env_path in ["config.env", ".env", "../config.env"]:
                if Path(env_path).exists():
                    load_dotenv(env_path)
                    break

        return cls(
            # Provider
            tracking_api_key=os.getenv("TRACKING_API_KEY", ""),
            tracking_api_url=os.getenv("TRACKING_API_URL", "https://api.17track.net/track/v2.4"),
            request_timeout=float(os.getenv("TRACKING_REQUEST_TIMEOUT", "15")),
            registration_delay=float(os.getenv("TRACKING_REGISTRATION_DELAY", "0.2")),
            webhook_secret=os.getenv("TRACKING_WEBHOOK_SECRET", ""),

            # Storage
            database_url=os.getenv("DATABASE_URL", "sqlite:///./hospice_tracking.db"),

            # Server
            server_host=os.getenv("SERVER_HOST", "0.0.0.0"),
            server_port=int(os.getenv("SERVER_PORT", "8000")),

            # Logging
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "./logs/tracking.log"),
        )

    def ensure_directories(self):
        """Create necessary directories if they don't exist."""
        Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)

    def validate(self) -> list[str]:
        """Validate configuration and return list of warnings."""
        warnings = []

        if not self.tracking_api_key:
            warnings.append("TRACKING_API_KEY not set - live tracking and registration disabled")
        if not self.webhook_secret:
            warnings.append("TRACKING_WEBHOOK_SECRET not set - webhook signatures not verified")
        if self.request_timeout <= 0:
            warnings.append("TRACKING_REQUEST_TIMEOUT must be positive")

        return warnings


# Global config instance
_config: Optional[TrackingConfig] = None


def get_config() -> TrackingConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = TrackingConfig.from_env()
    return _config


def init_config(env_file: Optional[str] = None) -> TrackingConfig:
    """Initialize configuration from environment."""
    global _config
    _config = TrackingConfig.from_env(env_file)
    _config.ensure_directories()
    return _config
