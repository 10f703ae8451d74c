"""
Error Definitions

Exceptions raised by the connection layer and the cluster engine.

Setup failures (unreachable seed, non-cluster node) abort a run.
Everything found while auditing a loaded topology is reported through
trib.cluster.report.AuditReport instead of being raised.
"""

from typing import Optional


class TribError(Exception):
    """Base class for all kv-cluster-trib errors."""


class NodeUnreachableError(TribError, ConnectionError):
    """A node could not be connected to, or dropped the connection."""

    def __init__(self, address: str, reason: str = ""):
        self.address = address
        self.reason = reason
        message = f"could not connect to {address}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ProtocolError(TribError):
    """The node sent bytes that are not a valid reply."""


class ReplyError(TribError):
    """
    The node answered a command with an error reply.

    Attributes:
        code: First word of the error message (e.g. 'ERR', 'BUSYKEY')
    """

    @property
    def code(self) -> str:
        message = str(self)
        return message.split(" ", 1)[0] if message else ""


class NotClusterModeError(TribError):
    """The node does not have cluster support enabled."""


class FixError(TribError):
    """
    An open slot cannot be repaired automatically.

    Attributes:
        slot: The slot whose repair was abandoned
    """

    def __init__(self, slot: int, message: str):
        self.slot = slot
        super().__init__(message)


class AmbiguousReferenceError(TribError):
    """An abbreviated node id matches more than one node."""

    def __init__(self, prefix: str, candidates: Optional[list] = None):
        self.prefix = prefix
        self.candidates = candidates or []
        super().__init__(
            f"node id prefix '{prefix}' matches {len(self.candidates)} nodes"
        )


class ConvergenceTimeoutError(TribError):
    """Nodes did not agree about the configuration before the deadline."""

    def __init__(self, timeout: float, attempts: int):
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"configuration did not converge within {timeout:.1f}s "
            f"({attempts} checks)"
        )
