"""
Slot Migration Module

Moves the keys of one slot from a source node to a target node with
MIGRATE. Each key is removed from the source only once the target has
stored it, so a move interrupted half-way can simply be run again.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from ..config.settings import settings
from ..errors import ReplyError
from ..protocol.commands import Command
from .node import ClusterNode
from .topology import TopologyGraph

logger = logging.getLogger(__name__)


@dataclass
class MoveOptions:
    """
    Options for move_slot().

    Attributes:
        verbose: Log every moved key
        fix: Overwrite keys that already exist on the target (REPLACE)
        cold: Move keys without opening the slot or reassigning it
        update: Reflect the new owner in the local slot sets
        quiet: Don't log informational messages
        pipeline: Keys moved per MIGRATE round-trip
        timeout: MIGRATE timeout in milliseconds
    """
    verbose: bool = False
    fix: bool = False
    cold: bool = False
    update: bool = False
    quiet: bool = False
    pipeline: int = field(default_factory=lambda: settings.MIGRATE_DEFAULT_PIPELINE)
    timeout: int = field(default_factory=lambda: settings.MIGRATE_DEFAULT_TIMEOUT)


@dataclass
class MoveResult:
    """Outcome of one move_slot() call."""
    slot: int
    keys_moved: int = 0
    batches: int = 0


async def _migrate_keys(
        source: ClusterNode,
        target: ClusterNode,
        keys: List[str],
        options: MoveOptions,
) -> None:
    try:
        await source.execute(Command.migrate(target.host, target.port, keys, options.timeout))
    except ReplyError as e:
        if not (options.fix and e.code == "BUSYKEY"):
            raise
        logger.warning(f"*** Target key exists on {target}. Replacing it for FIX.")
        await source.execute(
            Command.migrate(target.host, target.port, keys, options.timeout, replace=True)
        )


async def move_slot(
        graph: TopologyGraph,
        source: ClusterNode,
        target: ClusterNode,
        slot: int,
        options: MoveOptions = None,
) -> MoveResult:
    """
    Move every key of slot from source to target.

    Unless options.cold is set the slot is first opened (importing on
    the target, migrating on the source) and, once empty on the source,
    assigned to the target on every master of the graph.

    Raises:
        ReplyError: If a node rejects a command
        NodeUnreachableError: If a node drops the connection
    """
    options = options or MoveOptions()
    result = MoveResult(slot=slot)

    if not options.cold:
        await target.set_slot_importing(slot, source.id)
        await source.set_slot_migrating(slot, target.id)

    if not options.quiet:
        logger.info(f"Moving slot {slot} from {source} to {target}")

    while True:
        keys = await source.get_keys_in_slot(slot, options.pipeline)
        if not keys:
            break
        await _migrate_keys(source, target, keys, options)
        result.keys_moved += len(keys)
        result.batches += 1
        if options.verbose:
            for key in keys:
                logger.info(f"  {slot}: moved {key}")

    if not options.cold:
        # Target first, so it stops importing before anyone points at it.
        await target.set_slot_node(slot, target.id)
        for node in graph.masters():
            if node is not target:
                await node.set_slot_node(slot, target.id)

    if options.update:
        source.slots.discard(slot)
        target.slots.add(slot)

    if not options.quiet:
        logger.info(f"Moved {result.keys_moved} keys of slot {slot} to {target}")
    return result
