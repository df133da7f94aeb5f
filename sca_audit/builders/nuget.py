"""NuGet dependency trees from ``obj/project.assets.json``.

``dotnet restore`` writes one assets file per project; every project of the
working directory (a solution may hold several) becomes its own tree.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog

from sca_audit.builders.base import resolution_url, run_tool, tree_from_graph
from sca_audit.exceptions import AuditError
from sca_audit.models import GraphNode
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology, component_id
from sca_audit.tree import unique_dependency_ids

log = structlog.get_logger("sca_audit.builders")

_SKIPPED_DIRS = {"bin", "obj", "node_modules", ".git"}


def parse_assets(assets: dict[str, Any], default_name: str = "root") -> GraphNode:
    """Build one project tree from a ``project.assets.json`` document."""
    project = assets.get("project") or {}
    name = (project.get("restore") or {}).get("projectName") or default_name
    root_id = component_id(Technology.NUGET, name, project.get("version") or "1.0.0")

    ids: dict[str, str] = {}  # lower-cased package name -> component id of the resolved version
    raw_edges: dict[str, dict[str, str]] = {}
    for target in (assets.get("targets") or {}).values():
        for key, info in target.items():
            if not isinstance(info, dict) or info.get("type") != "package":
                continue
            pkg, _, version = key.partition("/")
            node_id = ids.setdefault(pkg.lower(), component_id(Technology.NUGET, pkg, version))
            raw_edges.setdefault(node_id, {}).update(info.get("dependencies") or {})

    edges: dict[str, list[str]] = {
        node_id: [ids[d.lower()] for d in deps if d.lower() in ids]
        for node_id, deps in raw_edges.items()
    }

    direct: list[str] = []
    for framework in (project.get("frameworks") or {}).values():
        for pkg, spec in (framework.get("dependencies") or {}).items():
            if isinstance(spec, dict) and spec.get("target", "Package") != "Package":
                continue
            if pkg.lower() in ids:
                direct.append(ids[pkg.lower()])
    edges[root_id] = direct
    return tree_from_graph(root_id, lambda node_id: edges.get(node_id, []))


def find_projects(root: Path) -> list[Path]:
    projects: list[Path] = []
    for path in sorted(root.rglob("*.csproj")):
        if _SKIPPED_DIRS & set(path.relative_to(root).parts[:-1]):
            continue
        projects.append(path)
    return projects


class NugetTreeBuilder:
    technology = Technology.NUGET

    def build(self, params: AuditParams) -> tuple[list[GraphNode], list[str]]:
        command = ["dotnet", "restore"]
        source = resolution_url(params, "nuget")
        if source:
            command += ["--source", source]
        run_tool(command)

        trees: list[GraphNode] = []
        for project in find_projects(Path.cwd()):
            assets_file = project.parent / "obj" / "project.assets.json"
            if not assets_file.is_file():
                log.warning("nuget.assets_missing", project=str(project))
                continue
            try:
                assets = json.loads(assets_file.read_text(encoding="utf-8-sig"))
            except json.JSONDecodeError as e:
                raise AuditError(f"could not parse {assets_file}: {e}") from e
            trees.append(parse_assets(assets, default_name=project.stem))
        return trees, unique_dependency_ids(trees)
