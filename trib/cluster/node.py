"""
Cluster Node Module

Defines ClusterNode, the tool's view of one cluster member: identity,
flags, owned slots and in-flight migration markers, together with the
connection used to query and reconfigure it.

Node views are loaded from the CLUSTER NODES text format:

    <id> <ip:port@cport[,hostname]> <flags> <master> <ping-sent> \\
        <pong-recv> <config-epoch> <link-state> <slot> <slot> ...

where each slot token is one of:
    N           a single owned slot
    A-B         an owned range
    [N->-<id>]  slot N is migrating to node <id>
    [N-<-<id>]  slot N is importing from node <id>
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from ..errors import NodeUnreachableError, ProtocolError
from ..protocol.commands import Command

logger = logging.getLogger(__name__)

# The node we are connected to reports itself with this flag.
SELF_FLAG = "self"


def format_slot_ranges(slots: Iterable[int], separator: str = ",") -> str:
    """
    Render a slot set as compressed ascending ranges.

    Examples:
        >>> format_slot_ranges({0, 1, 2, 5, 7, 8})
        '0-2,5,7-8'
    """
    ordered = sorted(set(slots))
    ranges = []
    start = prev = None
    for slot in ordered:
        if start is None:
            start = prev = slot
        elif slot == prev + 1:
            prev = slot
        else:
            ranges.append((start, prev))
            start = prev = slot
    if start is not None:
        ranges.append((start, prev))
    return separator.join(str(a) if a == b else f"{a}-{b}" for a, b in ranges)


def _parse_slot_token(node: "ClusterNode", token: str) -> None:
    if token.startswith("["):
        body = token.strip("[]")
        if "->-" in body:
            slot, target = body.split("->-", 1)
            node.migrating[int(slot)] = target
        elif "-<-" in body:
            slot, source = body.split("-<-", 1)
            node.importing[int(slot)] = source
        else:
            raise ValueError(f"unknown slot marker: {token}")
    elif "-" in token:
        start, stop = token.split("-", 1)
        node.slots.update(range(int(start), int(stop) + 1))
    else:
        node.slots.add(int(token))


def parse_nodes_line(line: str) -> "ClusterNode":
    """
    Parse one line of CLUSTER NODES output into a connection-less node.

    Raises:
        ProtocolError: If the line is malformed
    """
    parts = line.split()
    if len(parts) < 8:
        raise ProtocolError(f"malformed cluster nodes line: {line!r}")

    node_id, addr, flags, master, _ping, _pong, epoch, _link = parts[:8]

    # ip:port@cport[,hostname]
    addr = addr.split(",", 1)[0].split("@", 1)[0]
    try:
        node = ClusterNode(addr if addr.rpartition(":")[0] else "")
        if not node.host:
            # noaddr peers report ':0'
            node.port = int(addr.rpartition(":")[2] or 0)

        node.id = node_id
        node.flags = {SELF_FLAG if f == "myself" else f for f in flags.split(",") if f and f != "noflags"}
        node.replicate_of = None if master == "-" else master
        node.config_epoch = int(epoch)
        for token in parts[8:]:
            _parse_slot_token(node, token)
    except ValueError as e:
        raise ProtocolError(f"malformed cluster nodes line: {line!r}: {e}") from None
    return node


def parse_cluster_nodes(text: str) -> List["ClusterNode"]:
    """Parse full CLUSTER NODES output, one node per non-empty line."""
    return [parse_nodes_line(line) for line in text.splitlines() if line.strip()]


def config_signature_from_nodes(text: str) -> str:
    """
    Compute the configuration signature of one node's peer table.

    The signature lists every master that owns at least one slot as
    '<id>:<ranges>', sorted by id and joined with '|'. Slot lists are
    canonicalised, so two nodes agree iff their signatures are equal
    regardless of line order or how ranges were split.
    """
    entries = []
    for entry in parse_cluster_nodes(text):
        if not entry.slots or entry.is_slave:
            continue
        entries.append(f"{entry.id}:{format_slot_ranges(entry.slots)}")
    return "|".join(sorted(entries))


class ClusterNode:
    """
    One cluster member as currently known by the tool.

    Attributes:
        id: 40 character node identifier
        host: Node host
        port: Node port
        flags: Role and status flags ('master', 'slave', 'self', 'fail', ...)
        slots: Slots this node owns (meaningful for masters only)
        migrating: slot -> destination node id
        importing: slot -> source node id
        replicate_of: Id of the master this node replicates, if a slave
        replicas: Slave nodes replicating this node (derived)
        config_epoch: Configuration epoch reported by the node
        friends: Peer table entries reported by this node
        connection: NodeConnection used for commands, or None
    """

    def __init__(self, address: str = "", connection=None):
        self.host = ""
        self.port = 0
        if address:
            host, _, port = address.rpartition(":")
            self.host = host.strip("[]")
            self.port = int(port)

        self.id = ""
        self.flags: Set[str] = set()
        self.slots: Set[int] = set()
        self.migrating: Dict[int, str] = {}
        self.importing: Dict[int, str] = {}
        self.replicate_of: Optional[str] = None
        self.replicas: List["ClusterNode"] = []
        self.config_epoch = 0
        self.friends: List["ClusterNode"] = []
        self.connection = connection

    # ------------------------------------------------------------------
    # Identity and flags
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags

    @property
    def is_master(self) -> bool:
        return self.has_flag("master")

    @property
    def is_slave(self) -> bool:
        return self.has_flag("slave")

    def __str__(self) -> str:
        return self.address

    def __repr__(self) -> str:
        role = "master" if self.is_master else "slave" if self.is_slave else "?"
        return f"ClusterNode({self.id[:8] or '?'} {self.address} {role})"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def execute(self, command: Command):
        """Run a command on this node."""
        if self.connection is None:
            raise NodeUnreachableError(self.address, "not connected")
        return await self.connection.execute(command)

    async def assert_cluster(self) -> bool:
        """Return True if the node runs with cluster support enabled."""
        info = await self.execute(Command.info("cluster"))
        for line in (info or "").splitlines():
            key, sep, value = line.partition(":")
            if sep and key.strip() == "cluster_enabled":
                return value.strip() not in ("", "0")
        return False

    async def load_info(self, get_friends: bool = False) -> None:
        """
        Load this node's own view, and optionally its peer table.

        Only the line flagged 'myself' is trusted for this node. The
        other lines are kept as friends for discovery purposes.

        Raises:
            ProtocolError: If the node does not report itself
        """
        text = await self.execute(Command.cluster_nodes())
        found = False
        friends = []
        for entry in parse_cluster_nodes(text or ""):
            if entry.has_flag(SELF_FLAG):
                self._load_self(entry)
                found = True
            elif get_friends:
                friends.append(entry)

        if not found:
            raise ProtocolError(f"{self.address} did not report itself in CLUSTER NODES")
        if get_friends:
            self.friends = friends
        logger.debug(f"Loaded {self!r}: {len(self.slots)} slots, {len(friends)} friends")

    def _load_self(self, entry: "ClusterNode") -> None:
        self.id = entry.id
        self.flags = set(entry.flags)
        self.slots = set(entry.slots)
        self.migrating = dict(entry.migrating)
        self.importing = dict(entry.importing)
        self.replicate_of = entry.replicate_of
        self.config_epoch = entry.config_epoch
        # A node that has not met anyone yet reports an empty host.
        if not self.host and entry.host:
            self.host, self.port = entry.host, entry.port

    async def get_config_signature(self) -> str:
        """Fetch the node's current peer table and compute its signature."""
        return config_signature_from_nodes(await self.execute(Command.cluster_nodes()) or "")

    # ------------------------------------------------------------------
    # Mutations: each one calls the node, then updates the local view
    # ------------------------------------------------------------------

    async def set_slot_stable(self, slot: int) -> None:
        await self.execute(Command.set_slot_stable(slot))
        self.migrating.pop(slot, None)
        self.importing.pop(slot, None)

    async def set_slot_importing(self, slot: int, from_id: str) -> None:
        await self.execute(Command.set_slot_importing(slot, from_id))
        self.importing[slot] = from_id

    async def set_slot_migrating(self, slot: int, to_id: str) -> None:
        await self.execute(Command.set_slot_migrating(slot, to_id))
        self.migrating[slot] = to_id

    async def set_slot_node(self, slot: int, node_id: str) -> None:
        await self.execute(Command.set_slot_node(slot, node_id))
        self.migrating.pop(slot, None)
        self.importing.pop(slot, None)
        if node_id.lower() == self.id.lower():
            self.slots.add(slot)
        else:
            self.slots.discard(slot)

    async def add_slots(self, *slots: int) -> None:
        await self.execute(Command.add_slots(*slots))
        self.slots.update(slots)

    async def del_slots(self, *slots: int) -> None:
        await self.execute(Command.del_slots(*slots))
        self.slots.difference_update(slots)

    async def set_config_epoch(self, epoch: int) -> None:
        await self.execute(Command.set_config_epoch(epoch))
        self.config_epoch = epoch

    async def bump_epoch(self) -> int:
        """Ask the node for a new config epoch; returns the epoch it holds."""
        reply = await self.execute(Command.bump_epoch())
        # 'BUMPED <epoch>' or 'STILL <epoch>'
        parts = str(reply).split()
        if len(parts) == 2 and parts[1].isdigit():
            self.config_epoch = int(parts[1])
        return self.config_epoch

    # ------------------------------------------------------------------
    # Read-only probes
    # ------------------------------------------------------------------

    async def count_keys_in_slot(self, slot: int) -> int:
        return int(await self.execute(Command.count_keys_in_slot(slot)))

    async def get_keys_in_slot(self, slot: int, count: int) -> List[str]:
        return list(await self.execute(Command.get_keys_in_slot(slot, count)) or [])

    async def dbsize(self) -> int:
        return int(await self.execute(Command.dbsize()))

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def info_string(self) -> str:
        """
        Render the node for the operator.

        Example:
            M: 07c37dfeb235213a872192d90877d0cd55635b91 127.0.0.1:7000
               slots:0-5460 (5461 slots) master
               1 additional replica(s)
        """
        role = "M" if self.is_master else "S"
        flags = ",".join(sorted(self.flags - {SELF_FLAG}))
        lines = [
            f"{role}: {self.id} {self.address}",
            f"   slots:{format_slot_ranges(self.slots)} ({len(self.slots)} slots) {flags}",
        ]
        if self.replicate_of:
            lines.append(f"   replicates {self.replicate_of}")
        elif self.is_master and self.replicas:
            lines.append(f"   {len(self.replicas)} additional replica(s)")
        return "\n".join(lines)
