"""
Node Connection Module

Provides the client used to talk to cluster nodes. Each connection wraps
a single-connection redis.asyncio client, is kept open for the lifetime
of a tool run and carries at most one command at a time.
"""

import logging
from typing import Any, Optional, Tuple

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    InvalidResponse,
    RedisError,
    ResponseError,
    TimeoutError as RedisTimeoutError,
)

from ..config.settings import settings
from ..errors import NodeUnreachableError, ProtocolError, ReplyError
from ..protocol.commands import Command

logger = logging.getLogger(__name__)


def split_address(address: str) -> Tuple[str, int]:
    """
    Split a 'host:port' string.

    IPv6 hosts are accepted in either 'ip:port' form (last colon wins)
    or '[ip]:port' form.

    Raises:
        ValueError: If the port is missing or not a number
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"invalid address '{address}', expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"invalid port in address '{address}'") from None


def reply_error(error: ResponseError) -> ReplyError:
    """
    Convert a redis error reply into a ReplyError.

    The client drops the generic 'ERR' prefix from error replies, so it
    is put back when the message does not start with an error code.
    """
    message = str(error)
    code = message.split(" ", 1)[0]
    if not code.isupper():
        message = f"ERR {message}"
    return ReplyError(message)


class NodeConnection:
    """
    Connection to a single cluster node.

    Usage:
        conn = NodeConnection('127.0.0.1', 7000)
        await conn.connect()
        nodes = await conn.execute(Command.cluster_nodes())
        await conn.close()

    Attributes:
        host: Node host
        port: Node port
    """

    def __init__(
            self,
            host: str,
            port: int,
            connect_timeout: float = None,
            command_timeout: float = None,
    ):
        self.host = host
        self.port = port
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.CONNECT_TIMEOUT
        )
        self.command_timeout = (
            command_timeout if command_timeout is not None else settings.COMMAND_TIMEOUT
        )

        self._client: Optional[aioredis.Redis] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> "NodeConnection":
        """
        Open the connection.

        Raises:
            NodeUnreachableError: If the node cannot be reached in time
        """
        client = aioredis.Redis(
            host=self.host,
            port=self.port,
            socket_connect_timeout=self.connect_timeout,
            socket_timeout=self.command_timeout,
            decode_responses=True,
            single_connection_client=True,
            # Repair commands are not idempotent, never resend them
            retry=Retry(NoBackoff(), 0),
        )
        # Replies are returned as the node sent them
        client.response_callbacks.clear()

        try:
            await client.initialize()
        except RedisTimeoutError:
            await self._dispose(client)
            raise NodeUnreachableError(self.address, "connection timeout") from None
        except (RedisError, OSError) as e:
            await self._dispose(client)
            raise NodeUnreachableError(self.address, str(e)) from e

        self._client = client
        logger.debug(f"Connected to {self.address}")
        return self

    async def execute(self, command: Command) -> Any:
        """Send a Command and return its decoded reply."""
        if command.is_mutating:
            logger.debug(f"{self.address}: {command}")
        return await self.call(*command.parts)

    async def call(self, *args) -> Any:
        """
        Send one command and wait for its reply.

        Returns:
            The decoded reply (str, int, list or None)

        Raises:
            ReplyError: If the node answered with an error reply
            ProtocolError: If the reply could not be decoded
            NodeUnreachableError: If the connection is closed or times out
        """
        if self._client is None:
            raise NodeUnreachableError(self.address, "not connected")

        try:
            return await self._client.execute_command(*args)
        except ResponseError as e:
            raise reply_error(e) from None
        except RedisTimeoutError:
            await self.close()
            raise NodeUnreachableError(self.address, "command timeout") from None
        except InvalidResponse as e:
            # Stream position is unknown after a decode failure
            await self.close()
            raise ProtocolError(str(e)) from e
        except (RedisConnectionError, OSError) as e:
            await self.close()
            raise NodeUnreachableError(self.address, str(e)) from e

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        client, self._client = self._client, None
        if client is not None:
            await self._dispose(client)

    async def _dispose(self, client: aioredis.Redis) -> None:
        try:
            await client.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Error closing connection to {self.address}: {e}")

    def __repr__(self) -> str:
        state = "connected" if self.connected else "closed"
        return f"NodeConnection({self.address}, {state})"


async def open_connection(address: str) -> NodeConnection:
    """
    Default connector: open a connection to 'host:port'.

    Raises:
        NodeUnreachableError: If the address is invalid or unreachable
    """
    try:
        host, port = split_address(address)
    except ValueError as e:
        raise NodeUnreachableError(address, str(e)) from None
    return await NodeConnection(host, port).connect()
