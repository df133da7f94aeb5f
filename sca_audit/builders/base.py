"""Dependency tree builder contract and shared helpers."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping
from typing import Protocol, runtime_checkable

import structlog

from sca_audit.exceptions import ToolExecutionError
from sca_audit.models import GraphNode
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology

log = structlog.get_logger("sca_audit.builders")


@runtime_checkable
class DependencyTreeBuilder(Protocol):
    """Interface every technology builder must satisfy.

    ``build`` runs in the scan unit's working directory and returns one full
    tree per independent root (module / project) together with the
    de-duplicated ids of every dependency across those trees.
    """

    technology: Technology

    def build(self, params: AuditParams) -> tuple[list[GraphNode], list[str]]: ...


def run_tool(
    command: list[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Run an ecosystem tool and capture its output.

    ``env`` entries are layered over the current environment. With
    ``check=False`` a non-zero exit is returned to the caller, for tools such as
    ``npm ls`` that report problems through the exit code but still print a
    usable tree.
    """
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)
    log.debug("builders.run_tool", command=" ".join(command), cwd=cwd or os.getcwd())
    try:
        proc = subprocess.run(
            command,
            cwd=cwd,
            env=full_env,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise ToolExecutionError(command, 127, f"{command[0]}: command not found") from e
    if check and proc.returncode != 0:
        raise ToolExecutionError(command, proc.returncode, proc.stderr or proc.stdout or "")
    return proc


def tree_from_graph(root_id: str, children_of: Callable[[str], list[str]]) -> GraphNode:
    """Expand an adjacency function into a tree rooted at *root_id*.

    A node's children are expanded only at its first occurrence; later
    occurrences become leaves, which keeps the tree linear in the size of the
    graph. Edges pointing back into the current path are dropped.
    """
    expanded: set[str] = set()
    root = GraphNode(id=root_id)
    stack: list[tuple[GraphNode, frozenset[str]]] = [(root, frozenset({root_id}))]
    expanded.add(root_id)
    while stack:
        node, path = stack.pop()
        for child_id in dict.fromkeys(children_of(node.id)):
            if child_id in path:
                continue
            child = GraphNode(id=child_id)
            node.nodes.append(child)
            if child_id in expanded:
                continue
            expanded.add(child_id)
            stack.append((child, path | {child_id}))
    return root


def resolution_url(params: AuditParams, api: str) -> str:
    """Artifactory API URL of the resolved dependencies repository, or ``""``."""
    if not params.deps_repo or params.server_details is None:
        return ""
    base = params.server_details.resolved_artifactory_url()
    if not base:
        return ""
    return f"{base}api/{api}/{params.deps_repo}"
