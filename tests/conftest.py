"""
Pytest Configuration and Fixtures

This module provides shared fixtures for all tests:
- FakeCluster: in-memory cluster nodes answering the management commands
- A real asyncio TCP server speaking RESP, for connection tests
"""

import asyncio
import socket
from contextlib import closing
from typing import AsyncGenerator, Dict, Iterable, List, Optional

import pytest
import pytest_asyncio

from trib.cluster.discovery import discover
from trib.cluster.node import format_slot_ranges
from trib.cluster.topology import TopologyGraph
from trib.errors import NodeUnreachableError, ReplyError


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def make_id(index: int) -> str:
    """Build a 40 character node id with a distinct first character."""
    return f"{index:x}".rjust(2, "0") * 20


def slot_keys(slot: int, count: int, prefix: str = "key") -> List[str]:
    return [f"{prefix}:{slot}:{i}" for i in range(count)]


# ============================================================================
# Fake cluster
# ============================================================================

class FakeNode:
    """
    In-memory cluster node.

    Holds its own slot ownership, migration markers and keys (grouped by
    slot), and answers the commands the tool sends. Every command is
    recorded in `calls`.
    """

    def __init__(
            self,
            cluster: "FakeCluster",
            node_id: str,
            port: int,
            role: str = "master",
            master_id: Optional[str] = None,
            slots: Iterable[int] = (),
    ):
        self.cluster = cluster
        self.id = node_id
        self.host = "127.0.0.1"
        self.port = port
        self.role = role
        self.master_id = master_id
        self.slots = set(slots)
        self.migrating: Dict[int, str] = {}
        self.importing: Dict[int, str] = {}
        self.keys: Dict[int, List[str]] = {}
        self.config_epoch = 0
        self.extra_flags: List[str] = []
        self.cluster_enabled = True
        self.down = False
        self.view_override: Optional[str] = None
        self.failures: Dict[str, ReplyError] = {}
        self.calls: List[tuple] = []

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def add_keys(self, slot: int, count: int, prefix: str = "key") -> List[str]:
        keys = slot_keys(slot, count, prefix)
        self.keys.setdefault(slot, []).extend(keys)
        return keys

    def render_line(self, myself: bool = False) -> str:
        flags = (["myself"] if myself else []) + [self.role] + self.extra_flags
        master = self.master_id or "-"
        tokens = format_slot_ranges(self.slots, " ").split()
        for slot, target in sorted(self.migrating.items()):
            tokens.append(f"[{slot}->-{target}]")
        for slot, source in sorted(self.importing.items()):
            tokens.append(f"[{slot}-<-{source}]")
        parts = [
            self.id,
            f"{self.address}@{self.port + 10000}",
            ",".join(flags),
            master,
            "0", "0",
            str(self.config_epoch),
            "connected",
        ] + tokens
        return " ".join(parts)

    def nodes_output(self) -> str:
        if self.view_override is not None:
            return self.view_override
        return "\n".join(
            n.render_line(myself=n is self) for n in self.cluster.nodes.values()
        ) + "\n"

    def handle(self, args) -> object:
        args = [str(a) for a in args]
        self.calls.append(tuple(args))
        self.cluster.log.append((self.address, tuple(args)))
        name = args[0].upper()
        sub = args[1].upper() if len(args) > 1 else ""

        failure = self.failures.get(sub or name) or self.failures.get(name)
        if failure is not None:
            raise failure

        if name == "PING":
            return "PONG"
        if name == "INFO":
            return f"# Cluster\r\ncluster_enabled:{1 if self.cluster_enabled else 0}\r\n"
        if name == "DBSIZE":
            return sum(len(k) for k in self.keys.values())
        if name == "MIGRATE":
            return self._migrate(args)
        if name != "CLUSTER":
            raise ReplyError(f"ERR unknown command '{args[0]}'")

        if sub == "NODES":
            return self.nodes_output()
        if sub == "SET-CONFIG-EPOCH":
            self.config_epoch = int(args[2])
            return "OK"
        if sub == "BUMPEPOCH":
            self.config_epoch = max(n.config_epoch for n in self.cluster.nodes.values()) + 1
            return f"BUMPED {self.config_epoch}"
        if sub == "ADDSLOTS":
            for slot in map(int, args[2:]):
                if slot in self.slots:
                    raise ReplyError(f"ERR Slot {slot} is already busy")
            self.slots.update(map(int, args[2:]))
            return "OK"
        if sub == "DELSLOTS":
            self.slots.difference_update(map(int, args[2:]))
            return "OK"
        if sub == "SETSLOT":
            return self._setslot(int(args[2]), args[3].upper(), args[4] if len(args) > 4 else None)
        if sub == "COUNTKEYSINSLOT":
            return len(self.keys.get(int(args[2]), []))
        if sub == "GETKEYSINSLOT":
            return list(self.keys.get(int(args[2]), [])[:int(args[3])])
        raise ReplyError(f"ERR unknown subcommand '{args[1]}'")

    def _setslot(self, slot: int, action: str, node_id: Optional[str]) -> str:
        if action == "STABLE":
            self.migrating.pop(slot, None)
            self.importing.pop(slot, None)
        elif action == "IMPORTING":
            self.importing[slot] = node_id
        elif action == "MIGRATING":
            self.migrating[slot] = node_id
        elif action == "NODE":
            self.migrating.pop(slot, None)
            self.importing.pop(slot, None)
            if node_id == self.id:
                self.slots.add(slot)
            else:
                self.slots.discard(slot)
        return "OK"

    def _migrate(self, args: List[str]) -> str:
        target = self.cluster.nodes[f"{args[1]}:{args[2]}"]
        replace = "REPLACE" in args[6:args.index("KEYS")]
        keys = args[args.index("KEYS") + 1:]
        by_key = {k: slot for slot, ks in self.keys.items() for k in ks}
        existing = {k for ks in target.keys.values() for k in ks}
        if not replace and any(k in existing for k in keys):
            raise ReplyError("BUSYKEY Target key name already exists.")
        moved = 0
        for key in keys:
            slot = by_key.get(key)
            if slot is None:
                continue
            self.keys[slot].remove(key)
            if key not in existing:
                target.keys.setdefault(slot, []).append(key)
            moved += 1
        return "OK" if moved else "NOKEY"


class FakeConnection:
    """Connection stand-in that dispatches straight to a FakeNode."""

    def __init__(self, node: FakeNode):
        self.node = node
        self.closed = False

    @property
    def address(self) -> str:
        return self.node.address

    async def execute(self, command):
        return await self.call(*command.parts)

    async def call(self, *args):
        if self.closed or self.node.down:
            raise NodeUnreachableError(self.address, "connection closed")
        return self.node.handle(args)

    async def close(self) -> None:
        self.closed = True


class FakeCluster:
    """
    A set of FakeNodes, addressable by 'host:port'.

    `log` records (address, command) for every command, across nodes.
    """

    def __init__(self):
        self.nodes: Dict[str, FakeNode] = {}
        self.connections: List[FakeConnection] = []
        self.log: List[tuple] = []
        self._next_port = 7000

    def add_node(
            self,
            role: str = "master",
            slots: Iterable[int] = (),
            node_id: Optional[str] = None,
            master: Optional[FakeNode] = None,
    ) -> FakeNode:
        index = len(self.nodes) + 1
        node = FakeNode(
            self,
            node_id or make_id(index),
            self._next_port,
            role=role,
            master_id=master.id if master else None,
            slots=slots,
        )
        self._next_port += 1
        self.nodes[node.address] = node
        return node

    def add_master(self, slots: Iterable[int] = (), node_id: Optional[str] = None) -> FakeNode:
        return self.add_node("master", slots, node_id)

    def add_slave(self, master: FakeNode, node_id: Optional[str] = None) -> FakeNode:
        return self.add_node("slave", (), node_id, master)

    @property
    def seed(self) -> str:
        return next(iter(self.nodes))

    def reset_calls(self) -> None:
        self.log.clear()
        for node in self.nodes.values():
            node.calls.clear()

    def mutating_calls(self) -> List[tuple]:
        reads = {"NODES", "COUNTKEYSINSLOT", "GETKEYSINSLOT"}
        return [
            c for n in self.nodes.values() for c in n.calls
            if not (c[0].upper() in ("PING", "INFO", "DBSIZE")
                    or (len(c) > 1 and c[1].upper() in reads))
        ]

    async def connect(self, address: str) -> FakeConnection:
        node = self.nodes.get(address)
        if node is None or node.down:
            raise NodeUnreachableError(address, "connection refused")
        connection = FakeConnection(node)
        self.connections.append(connection)
        return connection


# ============================================================================
# Cluster Fixtures
# ============================================================================

@pytest.fixture
def fake_cluster() -> FakeCluster:
    """Create an empty fake cluster."""
    return FakeCluster()


@pytest.fixture
def three_masters(fake_cluster: FakeCluster) -> FakeCluster:
    """
    Three masters splitting all 16384 slots, one slave for the first.

    Slots: {0-5460}, {5461-10922}, {10923-16383}
    """
    first = fake_cluster.add_master(range(0, 5461))
    fake_cluster.add_master(range(5461, 10923))
    fake_cluster.add_master(range(10923, 16384))
    fake_cluster.add_slave(first)
    return fake_cluster


async def load_graph(cluster: FakeCluster, fix: bool = False) -> TopologyGraph:
    """Discover a fake cluster from its first node."""
    return await discover(cluster.seed, cluster.connect, fix=fix)


@pytest_asyncio.fixture
async def graph(three_masters: FakeCluster) -> AsyncGenerator[TopologyGraph, None]:
    """Topology discovered from the three_masters cluster."""
    g = await load_graph(three_masters)
    yield g
    await g.close()


# ============================================================================
# RESP Server Fixtures
# ============================================================================

# Canned replies with special handling: never answer, or drop the client.
SILENT = object()
HANGUP = object()


def encode_reply(value) -> bytes:
    """Encode a Python value as a RESP reply."""
    if isinstance(value, ReplyError):
        return b"-" + str(value).encode() + b"\r\n"
    if value is None:
        return b"$-1\r\n"
    if isinstance(value, int):
        return b":%d\r\n" % value
    if isinstance(value, list):
        return b"*%d\r\n" % len(value) + b"".join(encode_reply(v) for v in value)
    data = str(value).encode()
    return b"$%d\r\n" % len(data) + data + b"\r\n"


async def read_request(reader: asyncio.StreamReader) -> Optional[List[str]]:
    """Read one request (an array of bulk strings), or None at end of stream."""
    header = await reader.readline()
    if not header:
        return None
    parts = []
    for _ in range(int(header[1:])):
        size = int((await reader.readline())[1:])
        data = await reader.readexactly(size + 2)
        parts.append(data[:-2].decode())
    return parts


class RespServer:
    """
    Minimal RESP server answering from a table of canned replies.

    Replies are looked up by the upper-cased command words joined with
    a space, longest match first (e.g. 'CLUSTER NODES', then 'CLUSTER').
    """

    def __init__(self, host: str, port: int, replies: Dict[str, object]):
        self.host = host
        self.port = port
        self.replies = replies
        self.received: List[List[str]] = []
        self._server: Optional[asyncio.Server] = None

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                request = await read_request(reader)
                if request is None:
                    break
                self.received.append(request)
                reply = self._answer(request)
                if reply is HANGUP:
                    break
                if reply is SILENT:
                    continue
                writer.write(reply)
                await writer.drain()
        except (ConnectionResetError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()

    def _answer(self, request: List[str]):
        words = [w.upper() for w in request]
        for size in range(len(words), 0, -1):
            key = " ".join(words[:size])
            if key in self.replies:
                reply = self.replies[key]
                if reply is SILENT or reply is HANGUP or isinstance(reply, bytes):
                    return reply
                return encode_reply(reply)
        return encode_reply(ReplyError(f"ERR unknown command '{request[0]}'"))

    async def start(self) -> None:
        self._server = await asyncio.start_server(self.handle_client, self.host, self.port)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()


@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def resp_server(server_port: int) -> AsyncGenerator[RespServer, None]:
    """
    Start a RespServer on a free port.

    Tests fill in `resp_server.replies` before connecting.
    """
    srv = RespServer('127.0.0.1', server_port, {"PING": "PONG"})
    await srv.start()

    yield srv

    await srv.stop()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that open real sockets"
    )
