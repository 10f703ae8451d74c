"""
Cluster Topology Module

Holds every node discovered during a run, in discovery order, and the
relations derived from them (master -> replicas, id -> node lookup).
"""

import logging
from typing import Iterator, List, Optional

from ..errors import AmbiguousReferenceError
from .node import ClusterNode
from .report import ClusterIssue, IssueKind, Severity

logger = logging.getLogger(__name__)


class TopologyGraph:
    """
    Ordered collection of ClusterNode views for one cluster.

    A graph is created empty, populated once by discovery, optionally
    mutated in place by repairs, and discarded when the run ends.

    Attributes:
        nodes: Node views in discovery order
        fix: Whether repairs are authorized for this run
        warnings: Non-fatal anomalies found while building the graph
    """

    def __init__(self, fix: bool = False):
        self.nodes: List[ClusterNode] = []
        self.fix = fix
        self.warnings: List[ClusterIssue] = []

    def add_node(self, node: ClusterNode) -> None:
        self.nodes.append(node)

    def __iter__(self) -> Iterator[ClusterNode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def masters(self) -> List[ClusterNode]:
        return [n for n in self.nodes if n.is_master]

    def non_slaves(self) -> List[ClusterNode]:
        """Nodes that may hold keys for a slot (everything but replicas)."""
        return [n for n in self.nodes if not n.is_slave]

    def warn(self, kind: IssueKind, message: str, node_id: str = None) -> ClusterIssue:
        """Record a non-fatal anomaly found while building the graph."""
        issue = ClusterIssue(kind=kind, message=message, severity=Severity.WARNING, node_id=node_id)
        self.warnings.append(issue)
        logger.warning(f"*** {message}")
        return issue

    def populate_replicas(self) -> List[ClusterIssue]:
        """
        Recompute every node's replicas list from the replicate_of fields.

        Returns:
            Warnings for slaves whose master is unknown or not a master
        """
        for node in self.nodes:
            node.replicas = []

        warnings = []
        for node in self.nodes:
            if not node.replicate_of:
                continue
            master = self.get_node_by_name(node.replicate_of)
            if master is None:
                warnings.append(self.warn(
                    IssueKind.ORPHAN_REPLICA,
                    f"{node} claims to be slave of unknown node ID {node.replicate_of}.",
                    node_id=node.id,
                ))
                continue
            if not master.is_master:
                warnings.append(self.warn(
                    IssueKind.ORPHAN_REPLICA,
                    f"{node} claims to be slave of {master}, which is not a master.",
                    node_id=node.id,
                ))
                continue
            master.replicas.append(node)

        return warnings

    def get_node_by_name(self, name: str) -> Optional[ClusterNode]:
        """Return the node with the given full id (case-insensitive), or None."""
        name = name.lower()
        for node in self.nodes:
            if node.id.lower() == name:
                return node
        return None

    def get_node_by_abbreviated_name(self, prefix: str, strict: bool = False) -> Optional[ClusterNode]:
        """
        Return the only node whose id starts with prefix (case-insensitive).

        Args:
            prefix: Leading part of a node id
            strict: Raise instead of returning None when several nodes match

        Returns:
            The matching node, or None when no node or several nodes match

        Raises:
            AmbiguousReferenceError: If strict and the prefix is ambiguous
        """
        prefix = prefix.lower()
        candidates = [n for n in self.nodes if n.id.lower().startswith(prefix)]
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.debug(f"Node id prefix '{prefix}' is ambiguous ({len(candidates)} matches)")
            if strict:
                raise AmbiguousReferenceError(prefix, candidates)
        return None

    def get_master_with_least_replicas(self) -> Optional[ClusterNode]:
        """
        Return the master with the fewest replicas.

        Ties go to the master seen first in discovery order.
        """
        best = None
        for node in self.masters():
            if best is None or len(node.replicas) < len(best.replicas):
                best = node
        return best

    def get_slot_owners(self, slot: int) -> List[ClusterNode]:
        """Return the masters that list slot as owned."""
        return [n for n in self.masters() if slot in n.slots]

    async def close(self) -> None:
        """Close every node connection."""
        for node in self.nodes:
            if node.connection is not None:
                await node.connection.close()
