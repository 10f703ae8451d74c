"""
Configuration Consistency Module

Compares each node's gossiped view of slot ownership against the
others. Nodes agree when their configuration signatures are identical.
"""

import asyncio
import logging
from typing import Optional

from ..config.settings import settings
from ..errors import ConvergenceTimeoutError
from .node import ClusterNode
from .report import AuditReport, IssueKind
from .topology import TopologyGraph

logger = logging.getLogger(__name__)


async def find_inconsistent_node(graph: TopologyGraph) -> Optional[ClusterNode]:
    """
    Return the first node whose signature differs from the first node's.

    Signatures are fetched fresh from every node, so repeated calls
    observe gossip progress.
    """
    reference = None
    for node in graph:
        signature = await node.get_config_signature()
        if reference is None:
            reference = signature
        elif signature != reference:
            logger.debug(f"Signature of {node} differs from {graph.nodes[0]}")
            return node
    return None


async def is_config_consistent(graph: TopologyGraph) -> bool:
    """Return True if every node agrees about the slots configuration."""
    return await find_inconsistent_node(graph) is None


async def check_config_consistency(graph: TopologyGraph) -> AuditReport:
    """Audit configuration agreement, recording a CONSISTENCY error on mismatch."""
    report = AuditReport()
    node = await find_inconsistent_node(graph)
    if node is None:
        logger.info("[OK] All nodes agree about slots configuration.")
    else:
        issue = report.error(
            IssueKind.CONSISTENCY,
            f"Nodes don't agree about configuration! (first mismatch at {node})",
            node_id=node.id,
        )
        logger.error(str(issue))
    return report


async def wait_cluster_join(
        graph: TopologyGraph,
        interval: float = None,
        timeout: float = None,
) -> int:
    """
    Poll until every node agrees about the configuration.

    The wait is cancellable at every poll, and bounded by timeout.

    Args:
        graph: The topology to poll
        interval: Seconds between checks (default from settings)
        timeout: Seconds before giving up (default from settings)

    Returns:
        The number of checks it took

    Raises:
        ConvergenceTimeoutError: If the nodes still disagree at the deadline
    """
    interval = interval if interval is not None else settings.CONVERGENCE_POLL_INTERVAL
    timeout = timeout if timeout is not None else settings.CONVERGENCE_TIMEOUT

    logger.info("Waiting for the cluster to join")
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0

    while True:
        attempts += 1
        if await is_config_consistent(graph):
            logger.info(f"Cluster configuration converged after {attempts} checks")
            return attempts
        if loop.time() + interval > deadline:
            raise ConvergenceTimeoutError(timeout, attempts)
        logger.debug(f"Configuration not converged yet (check {attempts})")
        await asyncio.sleep(interval)
