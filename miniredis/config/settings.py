"""
Mini-Redis Configuration Settings

All configuration constants for the server. Values that operators commonly
change can be overridden through MINIREDIS_* environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Server configuration settings."""

    # Network settings
    HOST: str = os.environ.get("MINIREDIS_HOST", "127.0.0.1")
    PORT: int = int(os.environ.get("MINIREDIS_PORT", "6379"))

    # Protocol settings
    READ_BUFFER_SIZE: int = 4096
    MAX_BULK_LENGTH: int = 512 * 1024 * 1024  # Same ceiling as proto-max-bulk-len
    MAX_INLINE_LENGTH: int = 64 * 1024  # Longest header line accepted before CRLF

    # Expiry settings
    CLEANUP_INTERVAL: float = float(os.environ.get("MINIREDIS_CLEANUP_INTERVAL", "60"))  # 0 disables

    # Logging settings
    DEBUG: bool = os.environ.get("MINIREDIS_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("MINIREDIS_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
