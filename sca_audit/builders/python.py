"""Python dependency trees from ``pipdeptree --json-tree``.

Pip and Poetry projects are read from the active (or Poetry-managed)
environment; Pipenv projects through ``pipenv graph --json-tree``, which emits
the same document.
"""

from __future__ import annotations

import json
import re
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

_TOOLING_PACKAGES = ["pip", "setuptools", "wheel", "pipdeptree"]

_REQUIREMENT_NAME_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


def normalize_name(name: str) -> str:
    """PEP 503 normalisation: ``Foo_Bar.baz`` -> ``foo-bar-baz``."""
    return re.sub(r"[-_.]+", "-", name).lower()


def requirement_names(content: str) -> set[str]:
    """Normalised project names listed in a requirements file."""
    names: set[str] = set()
    for raw in content.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        m = _REQUIREMENT_NAME_RE.match(line)
        if m:
            names.add(normalize_name(m.group(1)))
    return names


def parse_json_tree(
    entries: list[dict[str, Any]],
    root_id: str,
    keep_roots: set[str] | None = None,
) -> GraphNode:
    """Build one project tree from pipdeptree ``--json-tree`` entries.

    Tooling packages are dropped from the top level; with *keep_roots* only the
    named top-level packages are kept.
    """
    top = []
    for entry in entries:
        name = normalize_name(entry.get("key") or entry.get("package_name") or "")
        if name in _TOOLING_PACKAGES:
            continue
        if keep_roots is not None and name not in keep_roots:
            continue
        top.append(entry)
    root = GraphNode(id=root_id)
    stack: list[tuple[GraphNode, list[dict[str, Any]]]] = [(root, top)]
    while stack:
        parent, deps = stack.pop()
        for entry in deps:
            name = entry.get("key") or entry.get("package_name")
            version = entry.get("installed_version")
            if not name or not version or version == "?":
                continue
            child = GraphNode(id=component_id(Technology.PIP, normalize_name(name), version))
            parent.nodes.append(child)
            nested = entry.get("dependencies") or []
            if nested:
                stack.append((child, nested))
    return root


class PythonTreeBuilder:
    """One instance per Python tool (pip, pipenv, poetry)."""

    def __init__(self, technology: Technology) -> None:
        if technology not in (Technology.PIP, Technology.PIPENV, Technology.POETRY):
            raise ValueError(f"{technology} is not a Python technology")
        self.technology = technology

    def _command(self) -> list[str]:
        exclude = ",".join(_TOOLING_PACKAGES)
        if self.technology is Technology.PIPENV:
            return ["pipenv", "graph", "--json-tree"]
        if self.technology is Technology.POETRY:
            return ["poetry", "run", "pipdeptree", "--json-tree", "--exclude", exclude]
        return ["pipdeptree", "--json-tree", "--exclude", exclude]

    def build(self, params: AuditParams) -> tuple[list[GraphNode], list[str]]:
        env: dict[str, str] = {}
        index = resolution_url(params, "pypi")
        if index:
            env["PIP_INDEX_URL"] = f"{index}/simple"

        proc = run_tool(self._command(), env=env)
        try:
            entries = json.loads(proc.stdout or "[]")
        except json.JSONDecodeError as e:
            raise AuditError(f"could not parse {self.technology.formal} dependency graph: {e}") from e
        if not isinstance(entries, list):
            raise AuditError(f"unexpected {self.technology.formal} dependency graph format")

        keep_roots = self._requested_roots(params)
        project = normalize_name(Path.cwd().name)
        tree = parse_json_tree(entries, component_id(Technology.PIP, project, "0.0.0"), keep_roots)
        return [tree], unique_dependency_ids([tree])

    def _requested_roots(self, params: AuditParams) -> set[str] | None:
        """Restrict the top level to a requirements file's entries when one is used."""
        if self.technology is not Technology.PIP:
            return None
        path = Path(params.pip_requirements_file or "requirements.txt")
        if not path.is_file():
            return None
        names = requirement_names(path.read_text(encoding="utf-8", errors="replace"))
        log.debug("python.requirements_roots", file=str(path), count=len(names))
        return names or None
