"""
Bucket Topology: Range Partitioning of the Score Domain

Pure functions (no I/O) that derive the tree of buckets covering
[min_score, max_score]. Nodes are recomputed on every call and never
stored; only their counters are persisted, under the document id and
field names produced here.

Partitioning:
    A node [start, end] is split into chunks of
    ceil((end - start + 1) / branch_factor) scores. Each chunk is one
    field of the node's bucket; a chunk spanning more than one score
    has a child node one layer down.

    (1, 11, 10) -> chunk size 2:
        [1,2] [3,4] [5,6] [7,8] [9,10] [11,11]

Complexity:
    derive_node: O(branch_factor)
    save_chain / rank_chain: O(branch_factor x depth)
    list_all_nodes: O(number of nodes)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from rankmesh.core import constants as C


def format_document_id(layer: int, start: int, end: int) -> str:
    return C.DOCUMENT_ID_FORMAT.format(layer=layer, start=start, end=end)


def format_field_name(start: int, end: int) -> str:
    return C.FIELD_NAME_FORMAT.format(start=start, end=end)


@dataclass(frozen=True, slots=True)
class TopologyField:
    """One contiguous chunk of a node's range."""

    field_name: str
    start: int
    end: int
    has_child: bool

    def contains(self, score: int) -> bool:
        return self.start <= score <= self.end


@dataclass(frozen=True, slots=True)
class TopologyNode:
    """
    A bucket descriptor.

    Fields are ordered from the lowest to the highest sub-range and
    partition [start, end] without gaps.
    """

    layer: int
    start: int
    end: int
    fields: tuple[TopologyField, ...]

    @property
    def document_id(self) -> str:
        return format_document_id(self.layer, self.start, self.end)

    def field_for(self, score: int) -> TopologyField:
        """Field whose range contains score."""
        for field in self.fields:
            if field.contains(score):
                return field
        raise ValueError(f"score {score} outside node [{self.start}, {self.end}]")


@dataclass(frozen=True, slots=True)
class ChainLink:
    """A node on a chain together with the fields an operation touches."""

    node: TopologyNode
    fields: tuple[TopologyField, ...]

    @property
    def document_id(self) -> str:
        return self.node.document_id


def derive_node(start: int, end: int, layer: int, branch_factor: int) -> TopologyNode:
    """
    Split [start, end] into branch_factor-bounded chunks.

    Raises:
        ValueError: If start > end or branch_factor < 2.
    """
    if start > end:
        raise ValueError(f"start must be <= end, got [{start}, {end}]")
    if branch_factor < C.MIN_BRANCH_FACTOR:
        raise ValueError(f"branch_factor must be >= {C.MIN_BRANCH_FACTOR}, got {branch_factor}")

    size = end - start + 1
    chunk = (size + branch_factor - 1) // branch_factor

    fields = []
    for chunk_start in range(start, end + 1, chunk):
        chunk_end = min(chunk_start + chunk - 1, end)
        fields.append(TopologyField(
            field_name=format_field_name(chunk_start, chunk_end),
            start=chunk_start,
            end=chunk_end,
            has_child=chunk_end > chunk_start,
        ))

    return TopologyNode(layer=layer, start=start, end=end, fields=tuple(fields))


def iter_nodes(min_score: int, max_score: int, branch_factor: int) -> Iterator[TopologyNode]:
    """Depth-first (pre-order) walk over every node of the tree."""
    stack = [(min_score, max_score, 0)]
    while stack:
        start, end, layer = stack.pop()
        node = derive_node(start, end, layer, branch_factor)
        yield node
        for field in reversed(node.fields):
            if field.has_child:
                stack.append((field.start, field.end, layer + 1))


def list_all_nodes(min_score: int, max_score: int, branch_factor: int) -> list[TopologyNode]:
    return list(iter_nodes(min_score, max_score, branch_factor))


def save_chain(
    min_score: int,
    max_score: int,
    branch_factor: int,
    score: int,
) -> list[ChainLink]:
    """
    Root-to-leaf chain for score, one field per node: the field whose
    range contains the score. The last link's field is the leaf
    [score, score].
    """
    chain: list[ChainLink] = []
    start, end, layer = min_score, max_score, 0

    while True:
        node = derive_node(start, end, layer, branch_factor)
        field = node.field_for(score)
        chain.append(ChainLink(node=node, fields=(field,)))
        if not field.has_child:
            return chain
        start, end, layer = field.start, field.end, layer + 1


def rank_chain(
    min_score: int,
    max_score: int,
    branch_factor: int,
    score: int,
) -> list[ChainLink]:
    """
    Root-to-leaf chain for score carrying, per node, every field ranked
    strictly better than score (ranges entirely above it). Summing
    their counts gives the number of tracked scores above score.
    """
    chain: list[ChainLink] = []
    start, end, layer = min_score, max_score, 0

    while True:
        node = derive_node(start, end, layer, branch_factor)
        better = tuple(field for field in node.fields if field.start > score)
        chain.append(ChainLink(node=node, fields=better))

        field = node.field_for(score)
        if not field.has_child:
            return chain
        start, end, layer = field.start, field.end, layer + 1


def tree_depth(min_score: int, max_score: int, branch_factor: int) -> int:
    """Length of the longest chain (the first chunk of a node is never the shortest)."""
    return len(save_chain(min_score, max_score, branch_factor, min_score))


__all__ = [
    "ChainLink",
    "TopologyField",
    "TopologyNode",
    "derive_node",
    "format_document_id",
    "format_field_name",
    "iter_nodes",
    "list_all_nodes",
    "rank_chain",
    "save_chain",
    "tree_depth",
]
