"""Per-technology dependency tree builders."""

from sca_audit.builders.base import DependencyTreeBuilder, run_tool, tree_from_graph
from sca_audit.builders.registry import BuilderRegistry, create_default_registry

__all__ = [
    "BuilderRegistry",
    "DependencyTreeBuilder",
    "create_default_registry",
    "run_tool",
    "tree_from_graph",
]
