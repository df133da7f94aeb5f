"""Dependency tree helpers: flattening, id collection, path search."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator

import structlog

from sca_audit.core.logging import is_debug_enabled
from sca_audit.models import GraphNode

log = structlog.get_logger("sca_audit.tree")

FLAT_TREE_ROOT_ID = "root"


def flatten(unique_ids: Iterable[str]) -> GraphNode:
    """Build the two-level tree sent to the scan backend.

    The root is a synthetic ``"root"`` node with one leaf per id. Duplicate ids
    collapse onto their first occurrence so the children order is stable for a
    given input.
    """
    ids = list(dict.fromkeys(unique_ids))
    if is_debug_enabled():
        log.debug("tree.unique_dependencies", dependencies=json.dumps(ids, indent=2))
    return GraphNode(id=FLAT_TREE_ROOT_ID, nodes=[GraphNode(id=dep_id) for dep_id in ids])


def iter_nodes(tree: GraphNode) -> Iterator[GraphNode]:
    """Pre-order walk that includes *tree* itself."""
    stack = [tree]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.nodes))


def unique_dependency_ids(trees: Iterable[GraphNode]) -> list[str]:
    """Ids of every non-root node across *trees*, first-seen order, no duplicates."""
    seen: dict[str, None] = {}
    for tree in trees:
        for node in iter_nodes(tree):
            if node is tree:
                continue
            seen.setdefault(node.id, None)
    return list(seen)


def direct_dependencies(trees: Iterable[GraphNode]) -> set[str]:
    """Ids of the direct children of every root."""
    return {child.id for tree in trees for child in tree.nodes}


def find_paths(tree: GraphNode, target_id: str) -> list[list[str]]:
    """All root-to-node id paths in *tree* that end at *target_id*.

    The search keeps descending below a match, so a nested repeat of the same
    id yields its own, longer path.
    """
    paths: list[list[str]] = []
    stack: list[tuple[GraphNode, list[str]]] = [(tree, [tree.id])]
    while stack:
        node, path = stack.pop()
        if node.id == target_id:
            paths.append(path)
        for child in reversed(node.nodes):
            stack.append((child, path + [child.id]))
    return paths
