"""
Protocol Command Definitions

This module defines the management commands the tool sends to cluster
nodes. Each command type has a factory classmethod so call sites never
build argument vectors by hand.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterable, Tuple


class CommandType(Enum):
    """Enumeration of supported command types."""
    INFO = auto()
    CLUSTER_NODES = auto()
    SET_CONFIG_EPOCH = auto()
    BUMP_EPOCH = auto()
    ADD_SLOTS = auto()
    DEL_SLOTS = auto()
    SETSLOT_STABLE = auto()
    SETSLOT_IMPORTING = auto()
    SETSLOT_MIGRATING = auto()
    SETSLOT_NODE = auto()
    COUNT_KEYS_IN_SLOT = auto()
    GET_KEYS_IN_SLOT = auto()
    MIGRATE = auto()
    DBSIZE = auto()
    RAW = auto()


# Commands that change node state. Used for logging only.
MUTATING_COMMANDS = frozenset({
    CommandType.SET_CONFIG_EPOCH,
    CommandType.BUMP_EPOCH,
    CommandType.ADD_SLOTS,
    CommandType.DEL_SLOTS,
    CommandType.SETSLOT_STABLE,
    CommandType.SETSLOT_IMPORTING,
    CommandType.SETSLOT_MIGRATING,
    CommandType.SETSLOT_NODE,
    CommandType.MIGRATE,
})


@dataclass
class Command:
    """
    Represents a command to send to a node.

    Attributes:
        type: The type of command
        args: Argument vector, command name included
    """
    type: CommandType
    args: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Normalise every argument to a string."""
        self.args = tuple(str(a) for a in self.args)

    @property
    def parts(self) -> Tuple[str, ...]:
        return self.args

    @property
    def is_mutating(self) -> bool:
        return self.type in MUTATING_COMMANDS

    def __str__(self) -> str:
        return " ".join(self.args)

    @classmethod
    def info(cls, section: str = "cluster") -> "Command":
        return cls(CommandType.INFO, ("INFO", section))

    @classmethod
    def cluster_nodes(cls) -> "Command":
        """Load the node's own view plus its gossip peer table."""
        return cls(CommandType.CLUSTER_NODES, ("CLUSTER", "NODES"))

    @classmethod
    def set_config_epoch(cls, epoch: int) -> "Command":
        return cls(CommandType.SET_CONFIG_EPOCH, ("CLUSTER", "SET-CONFIG-EPOCH", epoch))

    @classmethod
    def bump_epoch(cls) -> "Command":
        return cls(CommandType.BUMP_EPOCH, ("CLUSTER", "BUMPEPOCH"))

    @classmethod
    def add_slots(cls, *slots: int) -> "Command":
        return cls(CommandType.ADD_SLOTS, ("CLUSTER", "ADDSLOTS") + tuple(slots))

    @classmethod
    def del_slots(cls, *slots: int) -> "Command":
        return cls(CommandType.DEL_SLOTS, ("CLUSTER", "DELSLOTS") + tuple(slots))

    @classmethod
    def set_slot_stable(cls, slot: int) -> "Command":
        return cls(CommandType.SETSLOT_STABLE, ("CLUSTER", "SETSLOT", slot, "STABLE"))

    @classmethod
    def set_slot_importing(cls, slot: int, from_id: str) -> "Command":
        return cls(CommandType.SETSLOT_IMPORTING, ("CLUSTER", "SETSLOT", slot, "IMPORTING", from_id))

    @classmethod
    def set_slot_migrating(cls, slot: int, to_id: str) -> "Command":
        return cls(CommandType.SETSLOT_MIGRATING, ("CLUSTER", "SETSLOT", slot, "MIGRATING", to_id))

    @classmethod
    def set_slot_node(cls, slot: int, node_id: str) -> "Command":
        return cls(CommandType.SETSLOT_NODE, ("CLUSTER", "SETSLOT", slot, "NODE", node_id))

    @classmethod
    def count_keys_in_slot(cls, slot: int) -> "Command":
        return cls(CommandType.COUNT_KEYS_IN_SLOT, ("CLUSTER", "COUNTKEYSINSLOT", slot))

    @classmethod
    def get_keys_in_slot(cls, slot: int, count: int) -> "Command":
        return cls(CommandType.GET_KEYS_IN_SLOT, ("CLUSTER", "GETKEYSINSLOT", slot, count))

    @classmethod
    def migrate(
            cls,
            host: str,
            port: int,
            keys: Iterable[str],
            timeout: int,
            replace: bool = False,
    ) -> "Command":
        """
        Build a multi-key MIGRATE.

        Format: MIGRATE <host> <port> "" 0 <timeout> [REPLACE] KEYS <key>...
        """
        args = ["MIGRATE", host, port, "", 0, timeout]
        if replace:
            args.append("REPLACE")
        args.append("KEYS")
        args.extend(keys)
        return cls(CommandType.MIGRATE, tuple(args))

    @classmethod
    def dbsize(cls) -> "Command":
        return cls(CommandType.DBSIZE, ("DBSIZE",))

    @classmethod
    def raw(cls, *args) -> "Command":
        """Any command, sent as given."""
        return cls(CommandType.RAW, tuple(args))
