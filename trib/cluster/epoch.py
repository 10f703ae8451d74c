"""
Config Epoch Assignment Module

The cluster's own epoch collision resolution eventually gives every
node a distinct config epoch, but it is slow compared to handing out
progressive epochs up front. This is a best-effort hint: a node that
refuses the epoch is logged and skipped.
"""

import logging

from ..errors import TribError
from .topology import TopologyGraph

logger = logging.getLogger(__name__)


async def assign_config_epoch(graph: TopologyGraph) -> int:
    """
    Give the nodes config epochs 1, 2, 3, ... in graph order.

    Returns:
        The number of nodes that accepted their epoch
    """
    accepted = 0
    for epoch, node in enumerate(graph, start=1):
        try:
            await node.set_config_epoch(epoch)
        except TribError as e:
            logger.warning(f"Could not set config epoch {epoch} on {node}: {e}")
            continue
        accepted += 1
    logger.debug(f"Config epochs accepted by {accepted}/{len(graph)} nodes")
    return accepted
