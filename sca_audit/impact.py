"""Attach impact paths to scan findings using the full dependency trees.

The scan backend only ever sees the flattened tree, so every path it reports is
``root -> component``. The real paths are recomputed here from each full tree a
builder returned; a multi-module project contributes one set of paths per root.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from sca_audit.models import GraphNode
from sca_audit.tree import find_paths
from sca_audit.xray.models import ComponentDetails, ImpactPathNode, ScanResponse

log = structlog.get_logger("sca_audit.impact")


class ImpactPathResolver:
    """Caches paths per component id across the findings of one scan unit."""

    def __init__(self, full_trees: Iterable[GraphNode]) -> None:
        self.full_trees = list(full_trees)
        self._cache: dict[str, list[list[ImpactPathNode]]] = {}

    def paths_for(self, component_id: str) -> list[list[ImpactPathNode]]:
        if component_id not in self._cache:
            self._cache[component_id] = self._compute(component_id)
        return self._cache[component_id]

    def _compute(self, component_id: str) -> list[list[ImpactPathNode]]:
        seen: set[tuple[str, ...]] = set()
        impact_paths: list[list[ImpactPathNode]] = []
        for tree in self.full_trees:
            for path in find_paths(tree, component_id):
                key = tuple(path)
                if key in seen:
                    continue
                seen.add(key)
                impact_paths.append([ImpactPathNode(component_id=node_id) for node_id in path])
        if not impact_paths:
            log.debug("impact.path_not_found", component_id=component_id, trees=len(self.full_trees))
        return impact_paths

    def attach(self, components: dict[str, ComponentDetails]) -> None:
        for component_id, details in components.items():
            details.impact_paths = [list(p) for p in self.paths_for(component_id)]


def build_impact_paths_for_scan_responses(
    responses: list[ScanResponse],
    full_trees: Iterable[GraphNode],
) -> list[ScanResponse]:
    """Replace the impact paths of every vulnerability, violation and license."""
    resolver = ImpactPathResolver(full_trees)
    for response in responses:
        for vulnerability in response.vulnerabilities:
            resolver.attach(vulnerability.components)
        for violation in response.violations:
            resolver.attach(violation.components)
        for lic in response.licenses:
            resolver.attach(lic.components)
    return responses
