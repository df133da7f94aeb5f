"""npm dependency trees from ``npm ls --json --all``."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import structlog

from sca_audit.builders.base import resolution_url, run_tool
from sca_audit.exceptions import AuditError
from sca_audit.models import GraphNode
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology, component_id
from sca_audit.tree import unique_dependency_ids

log = structlog.get_logger("sca_audit.builders")


def parse_npm_ls(data: dict[str, Any], default_name: str = "root") -> GraphNode:
    """Convert ``npm ls --json`` output into a tree rooted at the project."""
    root = GraphNode(
        id=component_id(
            Technology.NPM,
            data.get("name") or default_name,
            data.get("version") or "0.0.0",
        )
    )
    stack: list[tuple[GraphNode, dict[str, Any]]] = [(root, data.get("dependencies") or {})]
    while stack:
        parent, deps = stack.pop()
        for name, info in deps.items():
            if not isinstance(info, dict):
                continue
            version = info.get("version")
            if not version:
                # Missing (not installed) or unmet peer dependency
                log.debug("npm.unresolved_dependency", name=name, parent=parent.id)
                continue
            child = GraphNode(id=component_id(Technology.NPM, name, version))
            parent.nodes.append(child)
            nested = info.get("dependencies")
            if isinstance(nested, dict) and nested:
                stack.append((child, nested))
    return root


class NpmTreeBuilder:
    technology = Technology.NPM

    def build(self, params: AuditParams) -> tuple[list[GraphNode], list[str]]:
        env: dict[str, str] = {}
        registry = resolution_url(params, "npm")
        if registry:
            env["npm_config_registry"] = registry

        start = time.monotonic()
        proc = run_tool(["npm", "ls", "--json", "--all"], env=env, check=False)
        try:
            data = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError as e:
            raise AuditError(f"could not parse 'npm ls' output: {e}") from e
        if proc.returncode != 0:
            # npm ls exits non-zero on peer/missing dependency problems but still prints the tree
            log.warning("npm.ls_problems", returncode=proc.returncode, problems=data.get("problems", []))
            if not data.get("dependencies"):
                raise AuditError(f"'npm ls' failed:\n{proc.stderr.strip()}")

        tree = parse_npm_ls(data, default_name=Path.cwd().name)
        log.debug("npm.tree_built", elapsed=round(time.monotonic() - start, 2))
        return [tree], unique_dependency_ids([tree])
