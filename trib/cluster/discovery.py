"""
Cluster Discovery Module

Builds a TopologyGraph by polling a seed node and then every peer the
seed reports in its gossip table.
"""

import logging
from typing import Awaitable, Callable

from ..errors import NodeUnreachableError, NotClusterModeError, TribError
from .connection import NodeConnection, open_connection
from .node import ClusterNode
from .report import IssueKind
from .topology import TopologyGraph

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[NodeConnection]]


async def load_seed(address: str, connector: Connector) -> ClusterNode:
    """
    Connect to the seed and load its own view plus its peer table.

    Raises:
        NodeUnreachableError: If the seed cannot be reached
        NotClusterModeError: If the seed is not a cluster node
    """
    connection = await connector(address)
    node = ClusterNode(address, connection)
    try:
        if not await node.assert_cluster():
            raise NotClusterModeError(f"Node {node} is not configured as a cluster node.")
        await node.load_info(get_friends=True)
    except BaseException:
        await connection.close()
        raise
    return node


async def load_peer(friend: ClusterNode, connector: Connector) -> ClusterNode:
    """
    Connect to a peer reported by another node and load its own view.

    Raises:
        TribError: If the peer cannot be reached or loaded
    """
    connection = await connector(friend.address)
    node = ClusterNode(friend.address, connection)
    try:
        await node.load_info()
    except BaseException:
        await connection.close()
        raise
    return node


async def discover(
        seed_address: str,
        connector: Connector = open_connection,
        fix: bool = False,
) -> TopologyGraph:
    """
    Discover the whole cluster starting from one node.

    Each node is trusted only for data about itself: the seed's peer
    table is used to find the other nodes, whose views are then loaded
    from the nodes themselves. Peers that cannot be reached are skipped.

    Args:
        seed_address: 'host:port' of any cluster node
        connector: Coroutine opening a connection to an address
        fix: Whether repairs are authorized on the returned graph

    Returns:
        The populated TopologyGraph

    Raises:
        NodeUnreachableError: If the seed cannot be reached
        NotClusterModeError: If the seed is not a cluster node
    """
    graph = TopologyGraph(fix=fix)

    try:
        seed = await load_seed(seed_address, connector)
    except NodeUnreachableError as e:
        logger.error(f"Seed node unreachable: {e}")
        raise
    graph.add_node(seed)

    for friend in seed.friends:
        if friend.has_flag("noaddr") or not friend.host:
            graph.warn(
                IssueKind.UNREACHABLE,
                f"Skipping node {friend.id} without an address.",
                node_id=friend.id,
            )
            continue

        try:
            node = await load_peer(friend, connector)
        except TribError as e:
            graph.warn(
                IssueKind.UNREACHABLE,
                f"Skipping unreachable node {friend.address} ({friend.id}): {e}",
                node_id=friend.id,
            )
            continue

        graph.add_node(node)

    graph.populate_replicas()
    logger.info(f"Discovered {len(graph)} nodes from {seed_address}")
    return graph
