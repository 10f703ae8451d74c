"""
Cluster Manager Module

ClusterTrib ties discovery, the audits and the repairs together for
one tool run, and renders the topology for the operator.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config.settings import settings
from ..errors import TribError
from ..protocol.commands import Command
from .connection import open_connection
from .consistency import check_config_consistency, wait_cluster_join
from .coverage import check_slots_coverage, fix_slots_coverage
from .discovery import Connector, discover
from .epoch import assign_config_epoch
from .node import ClusterNode
from .reconciler import check_open_slots
from .report import AuditReport
from .topology import TopologyGraph

logger = logging.getLogger(__name__)


@dataclass
class CallResult:
    """Reply (or error) of one node to a command run on every node."""
    node: ClusterNode
    reply: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ClusterTrib:
    """
    Entry point for inspecting and repairing one cluster.

    Usage:
        async with ClusterTrib('127.0.0.1:7000', fix=True) as trib:
            report = await trib.check_cluster()

    Attributes:
        seed_address: Address of the node discovery starts from
        fix: Whether repairs are authorized
        cover: Whether uncovered slots may be assigned (needs fix too)
        graph: The loaded topology (None before load())
    """

    def __init__(
            self,
            seed_address: str,
            fix: bool = False,
            cover: bool = False,
            connector: Connector = open_connection,
    ):
        self.seed_address = seed_address
        self.fix = fix
        self.cover = cover
        self.connector = connector
        self.graph: Optional[TopologyGraph] = None

    async def load(self) -> TopologyGraph:
        """
        Discover the cluster from the seed node.

        Raises:
            NodeUnreachableError: If the seed cannot be reached
            NotClusterModeError: If the seed is not a cluster node
        """
        self.graph = await discover(self.seed_address, self.connector, fix=self.fix)
        return self.graph

    def _require_graph(self) -> TopologyGraph:
        if self.graph is None:
            raise TribError("cluster not loaded, call load() first")
        return self.graph

    async def check_cluster(self, quiet: bool = False) -> AuditReport:
        """
        Run every audit, and the repairs when fix is set.

        Order: configuration consistency, open slots (repaired first,
        since owners chosen from existing keys beat the coverage policy),
        then slot coverage.
        """
        graph = self._require_graph()
        logger.info(f">>> Performing Cluster Check (using node {graph.nodes[0]}).")
        if not quiet:
            self.show_nodes()

        report = AuditReport(issues=list(graph.warnings))
        report.extend(await check_config_consistency(graph))
        report.extend(await check_open_slots(graph))
        report.extend(check_slots_coverage(graph))
        if graph.fix and self.cover:
            report.extend(await fix_slots_coverage(graph))
        return report

    def show_nodes(self) -> None:
        for node in self._require_graph():
            logger.info(node.info_string())

    async def show_cluster_info(self) -> Dict[str, int]:
        """
        Log keys, slots and replicas of every master.

        Returns:
            Summary with 'masters' and 'keys' totals
        """
        masters = 0
        keys = 0
        for node in self._require_graph().masters():
            try:
                dbsize = await node.dbsize()
            except TribError as e:
                logger.warning(f"Could not read DBSIZE of {node}: {e}")
                dbsize = 0
            logger.info(
                f"{node} ({node.id[:8]}...) -> {dbsize:<5d} keys | "
                f"{len(node.slots)} slots | {len(node.replicas)} slaves."
            )
            masters += 1
            keys += dbsize

        logger.info(f"[OK] {keys} keys in {masters} masters.")
        logger.info(f"{keys / settings.HASH_SLOTS:.2f} keys per slot on average.")
        return {"masters": masters, "keys": keys}

    async def each_call(self, *args) -> List[CallResult]:
        """Run a raw command on every node, one node at a time."""
        results = []
        for node in self._require_graph():
            try:
                reply = await node.execute(Command.raw(*args))
            except TribError as e:
                logger.error(f"{node}: {' '.join(map(str, args))}: {e}")
                results.append(CallResult(node=node, error=e))
                continue
            logger.info(f"{node}: {' '.join(map(str, args))}\n{_render(reply)}")
            results.append(CallResult(node=node, reply=reply))
        return results

    async def wait_cluster_join(self, timeout: float = None) -> int:
        return await wait_cluster_join(self._require_graph(), timeout=timeout)

    async def assign_config_epoch(self) -> int:
        return await assign_config_epoch(self._require_graph())

    async def close(self) -> None:
        if self.graph is not None:
            await self.graph.close()

    async def __aenter__(self) -> "ClusterTrib":
        await self.load()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def _render(reply: Any) -> str:
    if isinstance(reply, list):
        return "\n".join(_render(item) for item in reply)
    if reply is None:
        return "(nil)"
    return str(reply).strip()
