"""
kv-cluster-trib Configuration Settings

This module contains all configuration constants for the cluster tool.
Values that make sense to tune per environment can be overridden with
TRIB_* environment variables; command line flags override both.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Tool configuration settings."""

    # Cluster constants
    HASH_SLOTS: int = 16384

    # Connection settings
    CONNECT_TIMEOUT: float = float(os.environ.get("TRIB_CONNECT_TIMEOUT", "5.0"))
    COMMAND_TIMEOUT: float = float(os.environ.get("TRIB_COMMAND_TIMEOUT", "70.0"))

    # Key migration settings
    MIGRATE_DEFAULT_TIMEOUT: int = int(os.environ.get("TRIB_MIGRATE_TIMEOUT", "60000"))  # ms
    MIGRATE_DEFAULT_PIPELINE: int = int(os.environ.get("TRIB_MIGRATE_PIPELINE", "10"))

    # Convergence wait settings
    CONVERGENCE_POLL_INTERVAL: float = 1.0
    CONVERGENCE_TIMEOUT: float = float(os.environ.get("TRIB_CONVERGENCE_TIMEOUT", "60.0"))

    # Logging settings
    DEBUG: bool = os.environ.get("TRIB_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("TRIB_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
