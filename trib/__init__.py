"""
kv-cluster-trib: Cluster Topology Inspection and Slot Repair

A control-plane tool for slot-sharded, gossip-replicated key-value
clusters. It discovers the cluster topology from a seed node, audits
configuration consistency and slot coverage, and closes slots left
open by interrupted migrations.
"""

__version__ = "1.0.0"
