"""Yarn (classic) dependency trees from ``yarn list --json``.

``yarn list`` prints the hoisted package list, not the project tree, so the
direct dependencies are read from ``package.json`` and the rest of the tree is
expanded through the listed packages.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from sca_audit.builders.base import resolution_url, run_tool, tree_from_graph
from sca_audit.exceptions import AuditError
from sca_audit.models import GraphNode
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology, component_id
from sca_audit.tree import unique_dependency_ids


def split_name_version(spec: str) -> tuple[str, str]:
    """``@scope/pkg@1.2.3`` -> (``@scope/pkg``, ``1.2.3``)."""
    idx = spec.rfind("@")
    if idx <= 0:
        return spec, ""
    return spec[:idx], spec[idx + 1 :]


def _list_trees(lines: str) -> list[dict[str, Any]]:
    """Return the ``data.trees`` of the ``tree`` record in ``yarn list --json`` output."""
    for line in lines.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue
        if record.get("type") == "tree":
            return record.get("data", {}).get("trees", [])
    raise AuditError("'yarn list' output contains no dependency tree")


def build_yarn_tree(package_json: dict[str, Any], list_output: str, default_name: str = "root") -> GraphNode:
    packages: dict[str, str] = {}  # name -> version (first hoisted one wins)
    edges: dict[str, list[str]] = {}
    pending: list[tuple[str, list[dict[str, Any]]]] = []

    for entry in _list_trees(list_output):
        name, version = split_name_version(entry.get("name", ""))
        if not version:
            continue
        packages.setdefault(name, version)
        pending.append((component_id(Technology.YARN, name, version), entry.get("children") or []))

    for node_id, children in pending:
        child_ids = edges.setdefault(node_id, [])
        for child in children:
            name, version = split_name_version(child.get("name", ""))
            if not name:
                continue
            # Shadow entries name the requested range; resolve to the hoisted version
            if child.get("shadow") or not version[:1].isdigit():
                version = packages.get(name, version)
            if version:
                child_ids.append(component_id(Technology.YARN, name, version))

    root_id = component_id(
        Technology.YARN,
        package_json.get("name") or default_name,
        package_json.get("version") or "0.0.0",
    )
    direct: list[str] = []
    for section in ("dependencies", "devDependencies", "optionalDependencies"):
        for name in (package_json.get(section) or {}):
            if name in packages:
                direct.append(component_id(Technology.YARN, name, packages[name]))
    edges[root_id] = direct
    return tree_from_graph(root_id, lambda node_id: edges.get(node_id, []))


class YarnTreeBuilder:
    technology = Technology.YARN

    def build(self, params: AuditParams) -> tuple[list[GraphNode], list[str]]:
        package_json_path = Path("package.json")
        if not package_json_path.is_file():
            raise AuditError(f"package.json not found in {Path.cwd()}")
        package_json = json.loads(package_json_path.read_text(encoding="utf-8"))

        env: dict[str, str] = {}
        registry = resolution_url(params, "npm")
        if registry:
            env["YARN_REGISTRY"] = registry
        proc = run_tool(["yarn", "list", "--json", "--no-progress"], env=env)

        tree = build_yarn_tree(package_json, proc.stdout, default_name=Path.cwd().name)
        return [tree], unique_dependency_ids([tree])
