"""Protocol module for kv-cluster-trib."""

from .commands import Command, CommandType

__all__ = [
    "Command",
    "CommandType",
]
