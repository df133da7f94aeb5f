"""Maven and Gradle dependency trees — one tree per module / project."""

from __future__ import annotations

import re
import tempfile
from pathlib import Path
from xml.sax.saxutils import escape

import structlog

from sca_audit.builders.base import resolution_url, run_tool
from sca_audit.exceptions import AuditError
from sca_audit.models import GraphNode
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology, component_id
from sca_audit.tree import unique_dependency_ids

log = structlog.get_logger("sca_audit.builders")


def _gav_id(group: str, artifact: str, version: str) -> str:
    return component_id(Technology.MAVEN, f"{group}:{artifact}", version)


def maven_coordinate_id(coordinate: str) -> str:
    """``group:artifact:type[:classifier]:version[:scope]`` -> ``gav://group:artifact:version``."""
    parts = coordinate.strip().split(":")
    if len(parts) < 4:
        raise AuditError(f"unexpected Maven coordinate '{coordinate}'")
    version = parts[4] if len(parts) >= 6 else parts[3]
    return _gav_id(parts[0], parts[1], version)


def parse_tgf(content: str) -> list[GraphNode]:
    """Parse (possibly appended) TGF output of ``dependency:tree``.

    Every module contributes one block: node lines, a ``#`` separator, then
    edge lines. The first node of a block is the module itself.
    """
    trees: list[GraphNode] = []
    nodes: dict[str, GraphNode] = {}
    first: str | None = None
    in_edges = False

    def _flush() -> None:
        if first is not None:
            trees.append(nodes[first])

    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line == "#":
            in_edges = True
            continue
        key, _, rest = line.partition(" ")
        if in_edges:
            target, _, _scope = rest.partition(" ")
            if target.isdigit() and key in nodes and target in nodes:
                nodes[key].nodes.append(nodes[target])
                continue
            # A node line after edges starts the next module's block
            _flush()
            nodes, first, in_edges = {}, None, False
        nodes[key] = GraphNode(id=maven_coordinate_id(rest))
        if first is None:
            first = key
    _flush()
    return trees


_GRADLE_LINE_RE = re.compile(r"^(?P<prefix>(?:[|\s]    )*)[+\\]--- (?P<dep>.+)$")
_GRADLE_PROJECT_RE = re.compile(r"Project '(?P<path>:[^']+)'")


def _gradle_dependency_id(spec: str) -> str | None:
    """Resolve one ``gradle dependencies`` entry to a component id, or None to skip."""
    spec = re.sub(r"\s+\((?:\*|c|n|r)\)$", "", spec.strip())
    if spec.endswith("FAILED"):
        return None
    requested, _, selected = spec.partition(" -> ")
    parts = requested.split(":")
    if len(parts) < 2:
        return None
    version = selected.strip() if selected else (parts[2] if len(parts) > 2 else "")
    if not version:
        return None
    return _gav_id(parts[0], parts[1], version.split(" ")[0])


def parse_gradle_dependencies(output: str, root_id: str) -> GraphNode:
    """Parse one configuration's tree printed by ``gradle dependencies``.

    ``project :lib`` entries are transparent: their children are attached to the
    nearest real ancestor. Unresolved (``(n)``) and failed entries are skipped
    along with their subtree.
    """
    root = GraphNode(id=root_id)
    # stack[i] is the node that children at depth i+1 attach to; None = skipped subtree
    stack: list[GraphNode | None] = [root]
    for raw in output.splitlines():
        m = _GRADLE_LINE_RE.match(raw)
        if not m:
            continue
        depth = len(m.group("prefix")) // 5 + 1
        del stack[depth:]
        parent = stack[depth - 1] if len(stack) >= depth else None
        dep = m.group("dep").strip()
        if parent is None or dep.endswith(("(n)", "(c)")):
            stack.append(None)
            continue
        if dep.startswith("project "):
            stack.append(parent)
            continue
        node_id = _gradle_dependency_id(dep)
        if node_id is None:
            stack.append(None)
            continue
        child = GraphNode(id=node_id)
        parent.nodes.append(child)
        stack.append(child)
    return root


_SETTINGS_TEMPLATE = """<settings>
  <servers>
    <server>
      <id>sca-audit-resolver</id>
      <username>{user}</username>
      <password>{password}</password>
    </server>
  </servers>
  <mirrors>
    <mirror>
      <id>sca-audit-resolver</id>
      <mirrorOf>*</mirrorOf>
      <url>{url}</url>
    </mirror>
  </mirrors>
</settings>
"""


def _mirror_settings(params: AuditParams) -> str:
    """settings.xml mirroring every repository to the resolved one, or ``""``."""
    if not params.deps_repo or params.server_details is None:
        return ""
    base = params.server_details.resolved_artifactory_url()
    if not base:
        return ""
    details = params.server_details
    return _SETTINGS_TEMPLATE.format(
        user=escape(details.user),
        password=escape(details.password or details.access_token),
        url=escape(f"{base}{params.deps_repo}"),
    )


class MavenTreeBuilder:
    technology = Technology.MAVEN

    def build(self, params: AuditParams) -> tuple[list[GraphNode], list[str]]:
        executable = "./mvnw" if Path("mvnw").is_file() else "mvn"
        with tempfile.TemporaryDirectory(prefix="sca-maven-") as tmp:
            output_file = Path(tmp) / "dependencies.tgf"
            command = [
                executable,
                "dependency:tree",
                "-B",
                "-q",
                "-DoutputType=tgf",
                f"-DoutputFile={output_file}",
                "-DappendOutput=true",
            ]
            settings = _mirror_settings(params)
            if settings:
                settings_file = Path(tmp) / "settings.xml"
                settings_file.write_text(settings, encoding="utf-8")
                command += ["-s", str(settings_file)]
            run_tool(command)
            if not output_file.is_file():
                raise AuditError("'mvn dependency:tree' produced no output")
            trees = parse_tgf(output_file.read_text(encoding="utf-8"))
        log.debug("maven.modules", count=len(trees))
        return trees, unique_dependency_ids(trees)


class GradleTreeBuilder:
    technology = Technology.GRADLE

    def __init__(self, configuration: str = "runtimeClasspath") -> None:
        self.configuration = configuration

    def build(self, params: AuditParams) -> tuple[list[GraphNode], list[str]]:
        executable = "./gradlew" if Path("gradlew").is_file() else "gradle"
        env: dict[str, str] = {}
        repo = resolution_url(params, "gradle")
        if repo:
            env["ORG_GRADLE_PROJECT_depsRepoUrl"] = repo

        projects = [""] + self._subprojects(executable, env)
        root_name = Path.cwd().name
        trees: list[GraphNode] = []
        for project in projects:
            task = f"{project}:dependencies" if project else "dependencies"
            proc = run_tool([executable, "-q", task, "--configuration", self.configuration], env=env)
            name = f"{root_name}{project.replace(':', '.')}" if project else root_name
            trees.append(parse_gradle_dependencies(proc.stdout, _gav_id(root_name, name, "unspecified")))
        return trees, unique_dependency_ids(trees)

    @staticmethod
    def _subprojects(executable: str, env: dict[str, str]) -> list[str]:
        proc = run_tool([executable, "-q", "projects"], env=env)
        return list(dict.fromkeys(m.group("path") for m in _GRADLE_PROJECT_RE.finditer(proc.stdout)))
