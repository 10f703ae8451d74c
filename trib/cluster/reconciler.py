"""
Slot Reconciliation Module

Finds slots left open by interrupted migrations or conflicting
ownership claims and closes them.

A slot is stable when exactly one master owns it and no node has it in
migrating or importing state. Anything else is open. Every open slot is
repaired on its own, and detection always re-reads the current views,
so an interrupted pass can simply be run again.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..errors import FixError, ReplyError, TribError
from .coverage import uncovered_slots
from .migration import MoveOptions, move_slot
from .node import ClusterNode, format_slot_ranges
from .report import AuditReport, IssueKind
from .topology import TopologyGraph

logger = logging.getLogger(__name__)


@dataclass
class SlotState:
    """
    Everything the graph knows about one slot.

    Attributes:
        slot: The slot number
        owners: Masters listing the slot as owned
        migrating: Nodes with the slot in migrating state (sources)
        importing: Nodes with the slot in importing state (destinations),
            unexpected importers included
        unexpected: Nodes holding keys for the slot without owning or
            importing it
        key_counts: node id -> number of keys in the slot
    """
    slot: int
    owners: List[ClusterNode] = field(default_factory=list)
    migrating: List[ClusterNode] = field(default_factory=list)
    importing: List[ClusterNode] = field(default_factory=list)
    unexpected: List[ClusterNode] = field(default_factory=list)
    key_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return bool(self.migrating or self.importing or len(self.owners) != 1)

    def forget(self, node: ClusterNode) -> None:
        """Drop node from the transitional lists."""
        self.migrating = [n for n in self.migrating if n is not node]
        self.importing = [n for n in self.importing if n is not node]
        self.unexpected = [n for n in self.unexpected if n is not node]


def _nodes_string(nodes: List[ClusterNode]) -> str:
    return ",".join(str(n) for n in nodes)


def has_markers(graph: TopologyGraph, slot: int) -> bool:
    """True if any node has slot in migrating or importing state."""
    return any(slot in n.migrating or slot in n.importing for n in graph)


def open_slots(graph: TopologyGraph) -> List[int]:
    """Slots listed in any node's migrating or importing map, ascending."""
    slots = set()
    for node in graph:
        slots.update(node.migrating)
        slots.update(node.importing)
    return sorted(slots)


def multi_owner_slots(graph: TopologyGraph) -> List[int]:
    """Slots claimed by more than one master, ascending."""
    seen = set()
    shared = set()
    for node in graph.masters():
        shared.update(seen & node.slots)
        seen.update(node.slots)
    return sorted(shared)


async def _count_keys(node: ClusterNode, slot: int) -> int:
    try:
        return await node.count_keys_in_slot(slot)
    except ReplyError as e:
        logger.warning(f"Could not count keys of slot {slot} in {node}: {e}")
        return 0


async def detect_open_slots(graph: TopologyGraph, probe_uncovered: bool = True) -> List[int]:
    """
    Return every open slot, ascending.

    Open slots are those with migrating/importing markers, those claimed
    by several masters and, when probe_uncovered is set, uncovered slots
    for which some master still holds keys.
    """
    slots = set(open_slots(graph))
    slots.update(multi_owner_slots(graph))

    if probe_uncovered:
        for slot in uncovered_slots(graph):
            if slot in slots:
                continue
            for node in graph.non_slaves():
                if await _count_keys(node, slot) > 0:
                    slots.add(slot)
                    break

    return sorted(slots)


async def analyze_slot(graph: TopologyGraph, slot: int) -> SlotState:
    """
    Collect owners, transitional participants and key counts for slot.

    Every non-slave node is probed for keys. A node holding keys without
    owning the slot or having it open is an unexpected importer: an
    aborted migration left data behind on it.
    """
    state = SlotState(slot=slot, owners=graph.get_slot_owners(slot))

    for node in graph.non_slaves():
        count = await _count_keys(node, slot)
        state.key_counts[node.id] = count

        if slot in node.migrating:
            state.migrating.append(node)
        elif slot in node.importing:
            state.importing.append(node)
        elif count > 0 and node not in state.owners:
            logger.warning(f"*** Found keys about slot {slot} in node {node}!")
            state.unexpected.append(node)
            state.importing.append(node)

    return state


def _node_with_most_keys(candidates: List[ClusterNode], key_counts: Dict[str, int]) -> Optional[ClusterNode]:
    # Ties go to the first candidate in graph order.
    best = None
    for node in candidates:
        if best is None or key_counts.get(node.id, 0) > key_counts.get(best.id, 0):
            best = node
    return best


async def _claim_unowned_slot(graph: TopologyGraph, state: SlotState) -> ClusterNode:
    logger.info(">>> Nobody claims ownership, selecting an owner...")
    owner = _node_with_most_keys(graph.non_slaves(), state.key_counts)
    if owner is None or state.key_counts.get(owner.id, 0) == 0:
        raise FixError(
            state.slot,
            f"Can't select a slot owner for slot {state.slot}. Impossible to fix.",
        )

    logger.info(f"*** Configuring {owner} as the slot owner")
    await owner.set_slot_stable(state.slot)
    await owner.add_slots(state.slot)
    state.owners = [owner]
    state.forget(owner)
    return owner


async def _resolve_multiple_owners(graph: TopologyGraph, state: SlotState) -> ClusterNode:
    slot = state.slot
    owner = _node_with_most_keys(state.owners, state.key_counts)
    logger.info(f"*** Slot {slot} has {len(state.owners)} owners, keeping {owner}")

    for node in state.owners:
        if node is owner:
            continue
        # Keys leave a losing owner before its claim does, so a run stopped
        # midway still shows the slot as multiply owned.
        if state.key_counts.get(node.id, 0) > 0:
            await move_slot(graph, node, owner, slot, MoveOptions(fix=True, cold=True))
        await node.del_slots(slot)
        await node.set_slot_importing(slot, owner.id)
        state.migrating = [n for n in state.migrating if n is not node]
        if node not in state.importing:
            state.importing.append(node)

    # Make sure the surviving claim wins over what the losers gossiped.
    await owner.bump_epoch()
    state.owners = [owner]
    return owner


def _is_live_pair(source: ClusterNode, dest: ClusterNode, slot: int) -> bool:
    target = source.migrating.get(slot, "")
    origin = dest.importing.get(slot, "")
    return target.lower() == dest.id.lower() and origin.lower() == source.id.lower()


async def _close_transitions(graph: TopologyGraph, state: SlotState, owner: ClusterNode) -> ClusterNode:
    slot = state.slot
    sources = list(state.migrating)
    destinations = list(state.importing)

    # The owner migrating to a node that imports from it: finish the move.
    if owner in sources:
        for dest in destinations:
            if _is_live_pair(owner, dest, slot):
                await move_slot(graph, owner, dest, slot, MoveOptions(fix=True, update=True))
                sources.remove(owner)
                destinations.remove(dest)
                owner = dest
                break

    # Migrating without a live importer: send any keys home, close the slot.
    for source in sources:
        if source is not owner:
            await move_slot(graph, source, owner, slot, MoveOptions(fix=True, cold=True))
        await source.set_slot_stable(slot)

    # Importing without a live source, or holding stray keys.
    for dest in destinations:
        if dest is not owner:
            await move_slot(graph, dest, owner, slot, MoveOptions(fix=True, cold=True))
        if slot in dest.importing or slot in dest.migrating:
            await dest.set_slot_stable(slot)

    return owner


async def fix_open_slot(graph: TopologyGraph, slot: int) -> Optional[ClusterNode]:
    """
    Close one open slot.

    A slot with a single owner and no markers is left alone without
    contacting any node.

    Returns:
        The node owning the slot afterwards, or None if it was stable

    Raises:
        FixError: If nobody owns the slot and no node has keys for it
        TribError: If a node rejects or drops a repair command
    """
    owners = graph.get_slot_owners(slot)
    if len(owners) == 1 and not has_markers(graph, slot):
        logger.debug(f"Slot {slot} is stable, nothing to fix")
        return None

    logger.info(f">>> Fixing open slot {slot}")
    state = await analyze_slot(graph, slot)
    logger.info(f"Set as migrating in: {_nodes_string(state.migrating)}")
    logger.info(f"Set as importing in: {_nodes_string(state.importing)}")

    if not state.owners:
        owner = await _claim_unowned_slot(graph, state)
    elif len(state.owners) > 1:
        owner = await _resolve_multiple_owners(graph, state)
    else:
        owner = state.owners[0]

    owner = await _close_transitions(graph, state, owner)
    logger.info(f"[OK] Slot {slot} is owned by {owner}")
    return owner


async def check_open_slots(graph: TopologyGraph) -> AuditReport:
    """
    Report open slots and, if graph.fix is set, repair each of them.

    A slot that cannot be repaired is recorded as a FIX error; the
    remaining slots are still processed.
    """
    logger.info(">>> Check for open slots...")
    report = AuditReport()

    for node in graph:
        if node.migrating:
            issue = report.error(
                IssueKind.OPEN_SLOT,
                f"Node {node} has slots in migrating state ({format_slot_ranges(node.migrating)}).",
                node_id=node.id,
            )
            logger.error(str(issue))
        if node.importing:
            issue = report.error(
                IssueKind.OPEN_SLOT,
                f"Node {node} has slots in importing state ({format_slot_ranges(node.importing)}).",
                node_id=node.id,
            )
            logger.error(str(issue))

    marked = set(open_slots(graph))
    detected = await detect_open_slots(graph)
    for slot in detected:
        if slot in marked:
            continue
        owners = graph.get_slot_owners(slot)
        if len(owners) > 1:
            message = f"Slot {slot} is claimed by multiple masters ({_nodes_string(owners)})."
        else:
            message = f"Slot {slot} has keys but no owner."
        issue = report.error(IssueKind.OPEN_SLOT, message, slot=slot)
        logger.error(str(issue))

    if detected:
        logger.warning(f"The following slots are open: {format_slot_ranges(detected, ', ')}")

    if graph.fix:
        for slot in detected:
            try:
                await fix_open_slot(graph, slot)
            except FixError as e:
                issue = report.error(IssueKind.FIX, str(e), slot=slot)
                logger.error(str(issue))
            except TribError as e:
                issue = report.error(IssueKind.FIX, f"Failed to fix slot {slot}: {e}", slot=slot)
                logger.error(str(issue))

    return report
