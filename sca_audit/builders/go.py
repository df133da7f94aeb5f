"""Go module dependency trees from ``go mod graph``."""

from __future__ import annotations

from sca_audit.builders.base import resolution_url, run_tool, tree_from_graph
from sca_audit.exceptions import AuditError
from sca_audit.models import GraphNode
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology, component_id
from sca_audit.tree import unique_dependency_ids


def _module_id(module: str) -> str:
    path, _, version = module.partition("@")
    return component_id(Technology.GO, path, version or "0.0.0")


def parse_mod_graph(output: str) -> GraphNode:
    """Build the tree of the main module from ``go mod graph`` edges.

    Each line is ``<parent> <child>``; the main module is the only one printed
    without an ``@version`` suffix.
    """
    edges: dict[str, list[str]] = {}
    main: str | None = None
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 2:
            continue
        parent, child = parts
        if main is None and "@" not in parent:
            main = parent
        edges.setdefault(_module_id(parent), []).append(_module_id(child))
    if main is None:
        raise AuditError("could not find the main module in 'go mod graph' output")

    def children_of(node_id: str) -> list[str]:
        return [c for c in edges.get(node_id, []) if not _is_toolchain(c)]

    return tree_from_graph(_module_id(main), children_of)


def _is_toolchain(node_id: str) -> bool:
    # go/toolchain pseudo-modules are not dependencies
    return node_id.startswith(("go://go:", "go://toolchain:"))


class GoTreeBuilder:
    technology = Technology.GO

    def build(self, params: AuditParams) -> tuple[list[GraphNode], list[str]]:
        env: dict[str, str] = {}
        proxy = resolution_url(params, "go")
        if proxy:
            env["GOPROXY"] = proxy
        proc = run_tool(["go", "mod", "graph"], env=env)
        if not proc.stdout.strip():
            # a module without requirements prints no edges
            return [], []
        tree = parse_mod_graph(proc.stdout)
        return [tree], unique_dependency_ids([tree])
