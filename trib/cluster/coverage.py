"""
Slot Coverage Module

Verifies that the masters of a topology together own every hash slot,
and optionally assigns uncovered slots when repair is authorized.
"""

import logging
from typing import List, Set

from ..config.settings import settings
from ..errors import ReplyError
from .node import format_slot_ranges
from .report import AuditReport, IssueKind
from .topology import TopologyGraph

logger = logging.getLogger(__name__)


def covered_slots(graph: TopologyGraph) -> Set[int]:
    """Union of the slots owned by every master. Slaves are ignored."""
    slots: Set[int] = set()
    for node in graph.masters():
        slots.update(node.slots)
    return slots


def uncovered_slots(graph: TopologyGraph) -> List[int]:
    """Slots no master owns, ascending."""
    covered = covered_slots(graph)
    return [slot for slot in range(settings.HASH_SLOTS) if slot not in covered]


def check_coverage(graph: TopologyGraph) -> bool:
    """Return True if every hash slot is owned by some master."""
    return len(covered_slots(graph)) == settings.HASH_SLOTS


def check_slots_coverage(graph: TopologyGraph) -> AuditReport:
    """Audit slot coverage, recording a COVERAGE error for missing slots."""
    logger.info(">>> Check slots coverage...")
    report = AuditReport()
    if check_coverage(graph):
        logger.info(f"[OK] All {settings.HASH_SLOTS} slots covered.")
        return report

    missing = uncovered_slots(graph)
    issue = report.error(
        IssueKind.COVERAGE,
        f"Not all {settings.HASH_SLOTS} slots are covered by nodes "
        f"({len(missing)} uncovered: {format_slot_ranges(missing)}).",
    )
    logger.error(str(issue))
    return report


async def fix_slots_coverage(graph: TopologyGraph) -> AuditReport:
    """
    Assign every uncovered slot to a master.

    Each slot goes to the master currently owning the fewest slots,
    ties broken by discovery order. One add-slots call is issued per
    slot. Does nothing unless graph.fix is set.
    """
    report = AuditReport()
    if not graph.fix:
        logger.debug("Coverage fix not authorized, skipping")
        return report

    missing = uncovered_slots(graph)
    if not missing:
        return report

    masters = graph.masters()
    if not masters:
        report.error(IssueKind.FIX, "No master available to cover the missing slots.")
        return report

    logger.info(f">>> Fixing slots coverage ({len(missing)} slots)...")
    assigned = 0
    for slot in missing:
        target = min(masters, key=lambda n: len(n.slots))
        logger.debug(f"Covering slot {slot} with {target}")
        try:
            await target.add_slots(slot)
        except ReplyError as e:
            issue = report.error(
                IssueKind.FIX, f"Could not assign slot {slot} to {target}: {e}",
                node_id=target.id, slot=slot,
            )
            logger.error(str(issue))
            continue
        assigned += 1

    logger.info(f"Assigned {assigned} of {len(missing)} uncovered slots.")
    return report
