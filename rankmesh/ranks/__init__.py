"""
Ranks module: bucket topology, counter buckets, configuration guard and
the rank engine built on them.
"""

from rankmesh.ranks.topology import (
    ChainLink,
    TopologyField,
    TopologyNode,
    derive_node,
    list_all_nodes,
    rank_chain,
    save_chain,
    tree_depth,
)
from rankmesh.ranks.buckets import BucketAccessor, BucketDocument
from rankmesh.ranks.guard import ConfigurationGuard, EngineState
from rankmesh.ranks.engine import RankEngine

__all__ = [
    "ChainLink",
    "TopologyField",
    "TopologyNode",
    "derive_node",
    "list_all_nodes",
    "rank_chain",
    "save_chain",
    "tree_depth",
    "BucketAccessor",
    "BucketDocument",
    "ConfigurationGuard",
    "EngineState",
    "RankEngine",
]
