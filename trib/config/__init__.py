"""Configuration module for kv-cluster-trib."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
