"""
Cluster module for kv-cluster-trib.

This module provides:
- Node views and the topology graph
- Discovery from a seed node
- Consistency and coverage audits
- Open slot reconciliation and slot migration
"""

from .connection import NodeConnection, open_connection
from .consistency import check_config_consistency, is_config_consistent, wait_cluster_join
from .coverage import check_coverage, check_slots_coverage, covered_slots, fix_slots_coverage
from .discovery import discover
from .epoch import assign_config_epoch
from .manager import CallResult, ClusterTrib
from .migration import MoveOptions, MoveResult, move_slot
from .node import ClusterNode, config_signature_from_nodes, parse_cluster_nodes
from .reconciler import SlotState, analyze_slot, check_open_slots, detect_open_slots, fix_open_slot, open_slots
from .report import AuditReport, ClusterIssue, IssueKind, Severity
from .topology import TopologyGraph

__all__ = [
    'AuditReport',
    'CallResult',
    'ClusterIssue',
    'ClusterNode',
    'ClusterTrib',
    'IssueKind',
    'MoveOptions',
    'MoveResult',
    'NodeConnection',
    'Severity',
    'SlotState',
    'TopologyGraph',
    'analyze_slot',
    'assign_config_epoch',
    'check_config_consistency',
    'check_coverage',
    'check_open_slots',
    'check_slots_coverage',
    'config_signature_from_nodes',
    'covered_slots',
    'detect_open_slots',
    'discover',
    'fix_open_slot',
    'fix_slots_coverage',
    'is_config_consistent',
    'move_slot',
    'open_connection',
    'open_slots',
    'parse_cluster_nodes',
    'wait_cluster_join',
]
