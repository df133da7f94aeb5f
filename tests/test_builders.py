"""Tests for dependency tree builders — output parsing and tool invocation (mocked)."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from sca_audit.builders.base import resolution_url, run_tool, tree_from_graph
from sca_audit.builders.go import GoTreeBuilder, parse_mod_graph
from sca_audit.builders.java import (
    _mirror_settings,
    maven_coordinate_id,
    parse_gradle_dependencies,
    parse_tgf,
)
from sca_audit.builders.npm import NpmTreeBuilder, parse_npm_ls
from sca_audit.builders.nuget import find_projects, parse_assets
from sca_audit.builders.python import PythonTreeBuilder, parse_json_tree, requirement_names
from sca_audit.builders.registry import BuilderRegistry, create_default_registry
from sca_audit.builders.yarn import build_yarn_tree, split_name_version
from sca_audit.config import ServerDetails
from sca_audit.exceptions import AuditError, ToolExecutionError, UnsupportedTechnologyError
from sca_audit.models import GraphNode
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology
from sca_audit.tree import iter_nodes


def _ids(tree: GraphNode) -> list[str]:
    return [n.id for n in iter_nodes(tree)]


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


# ── Shared helpers ──


class TestRunTool:
    def test_missing_executable(self):
        with patch("sca_audit.builders.base.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(ToolExecutionError) as exc_info:
                run_tool(["definitely-not-installed", "ls"])
        assert exc_info.value.returncode == 127

    def test_non_zero_exit(self):
        with patch("sca_audit.builders.base.subprocess.run", return_value=_completed(returncode=2, stderr="boom")):
            with pytest.raises(ToolExecutionError, match="boom"):
                run_tool(["tool"])

    def test_non_zero_exit_unchecked(self):
        with patch("sca_audit.builders.base.subprocess.run", return_value=_completed("out", returncode=1)):
            assert run_tool(["tool"], check=False).stdout == "out"

    def test_env_layered_over_environment(self):
        with patch("sca_audit.builders.base.subprocess.run", return_value=_completed()) as run:
            run_tool(["tool"], env={"GOPROXY": "https://proxy"})
        env = run.call_args.kwargs["env"]
        assert env["GOPROXY"] == "https://proxy"
        assert "PATH" in env


class TestTreeFromGraph:
    def test_shared_node_expanded_once(self):
        edges = {"r": ["a", "b"], "a": ["c"], "b": ["c"], "c": ["d"]}
        tree = tree_from_graph("r", lambda n: edges.get(n, []))
        assert sorted(_ids(tree)) == ["a", "b", "c", "c", "d", "r"]

    def test_cycle_edges_dropped(self):
        edges = {"r": ["a"], "a": ["b"], "b": ["a", "r"]}
        tree = tree_from_graph("r", lambda n: edges.get(n, []))
        assert _ids(tree) == ["r", "a", "b"]


class TestResolutionUrl:
    def test_empty_without_repo(self):
        assert resolution_url(AuditParams(), "npm") == ""

    def test_built_from_artifactory_url(self):
        params = AuditParams(deps_repo="npm-remote", server_details=ServerDetails(url="https://acme.example"))
        assert resolution_url(params, "npm") == "https://acme.example/artifactory/api/npm/npm-remote"


class TestBuilderRegistry:
    def test_default_registry_covers_supported_technologies(self):
        registry = create_default_registry()
        for tech in Technology:
            if tech is Technology.DOTNET:
                with pytest.raises(UnsupportedTechnologyError):
                    registry.get(tech)
            else:
                assert registry.get(tech).technology is tech

    def test_unsupported(self):
        with pytest.raises(UnsupportedTechnologyError, match="go is currently not supported"):
            BuilderRegistry().get(Technology.GO)


# ── npm / Yarn ──


_NPM_LS = {
    "name": "app",
    "version": "1.0.0",
    "dependencies": {
        "express": {
            "version": "4.18.2",
            "dependencies": {"debug": {"version": "2.6.9", "dependencies": {"ms": {"version": "2.0.0"}}}},
        },
        "left-pad": {"required": "^1.0.0", "missing": True},
    },
}


class TestNpm:
    def test_parse_npm_ls(self):
        tree = parse_npm_ls(_NPM_LS)
        assert _ids(tree) == ["npm://app:1.0.0", "npm://express:4.18.2", "npm://debug:2.6.9", "npm://ms:2.0.0"]

    def test_default_root_name(self):
        assert parse_npm_ls({}, default_name="proj").id == "npm://proj:0.0.0"

    def test_build_tolerates_problems_when_tree_present(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        proc = _completed(json.dumps(_NPM_LS), returncode=1, stderr="peer dep missing")
        with patch("sca_audit.builders.npm.run_tool", return_value=proc) as run:
            trees, ids = NpmTreeBuilder().build(AuditParams())
        assert run.call_args.args[0] == ["npm", "ls", "--json", "--all"]
        assert ids == ["npm://express:4.18.2", "npm://debug:2.6.9", "npm://ms:2.0.0"]
        assert len(trees) == 1

    def test_build_fails_without_tree(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        proc = _completed("{}", returncode=1, stderr="ERR! no package.json")
        with patch("sca_audit.builders.npm.run_tool", return_value=proc):
            with pytest.raises(AuditError, match="no package.json"):
                NpmTreeBuilder().build(AuditParams())

    def test_registry_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        params = AuditParams(deps_repo="npm-remote", server_details=ServerDetails(url="https://acme.example"))
        with patch("sca_audit.builders.npm.run_tool", return_value=_completed(json.dumps(_NPM_LS))) as run:
            NpmTreeBuilder().build(params)
        assert run.call_args.kwargs["env"] == {
            "npm_config_registry": "https://acme.example/artifactory/api/npm/npm-remote"
        }


_YARN_LIST = "\n".join(
    [
        json.dumps({"type": "info", "data": "yarn list"}),
        json.dumps(
            {
                "type": "tree",
                "data": {
                    "type": "list",
                    "trees": [
                        {"name": "chalk@4.1.2", "children": [{"name": "ansi-styles@^4.1.0", "shadow": True}]},
                        {"name": "ansi-styles@4.3.0", "children": []},
                        {"name": "@scope/util@1.0.0", "children": []},
                    ],
                },
            }
        ),
    ]
)


class TestYarn:
    def test_split_name_version(self):
        assert split_name_version("@scope/pkg@1.2.3") == ("@scope/pkg", "1.2.3")
        assert split_name_version("lodash@4.17.21") == ("lodash", "4.17.21")
        assert split_name_version("@scope/pkg") == ("@scope/pkg", "")

    def test_build_tree(self):
        package_json = {"name": "web", "version": "2.0.0", "dependencies": {"chalk": "^4"}, "devDependencies": {"@scope/util": "1"}}
        tree = build_yarn_tree(package_json, _YARN_LIST)
        assert tree.id == "npm://web:2.0.0"
        assert [n.id for n in tree.nodes] == ["npm://chalk:4.1.2", "npm://@scope/util:1.0.0"]
        assert [n.id for n in tree.nodes[0].nodes] == ["npm://ansi-styles:4.3.0"]

    def test_no_tree_record(self):
        with pytest.raises(AuditError):
            build_yarn_tree({}, json.dumps({"type": "info", "data": "nothing"}))


# ── Go ──


_GO_GRAPH = """\
example.com/app github.com/pkg/errors@v0.9.1
example.com/app golang.org/x/text@v0.14.0
example.com/app go@1.21
golang.org/x/text@v0.14.0 golang.org/x/tools@v0.6.0
golang.org/x/tools@v0.6.0 golang.org/x/text@v0.14.0
"""


class TestGo:
    def test_parse_mod_graph(self):
        tree = parse_mod_graph(_GO_GRAPH)
        assert tree.id == "go://example.com/app:0.0.0"
        assert _ids(tree) == [
            "go://example.com/app:0.0.0",
            "go://github.com/pkg/errors:v0.9.1",
            "go://golang.org/x/text:v0.14.0",
            "go://golang.org/x/tools:v0.6.0",
        ]

    def test_no_main_module(self):
        with pytest.raises(AuditError):
            parse_mod_graph("")

    def test_build_sets_goproxy(self):
        params = AuditParams(deps_repo="go-remote", server_details=ServerDetails(url="https://acme.example"))
        with patch("sca_audit.builders.go.run_tool", return_value=_completed(_GO_GRAPH)) as run:
            trees, ids = GoTreeBuilder().build(params)
        assert run.call_args.kwargs["env"]["GOPROXY"].endswith("/api/go/go-remote")
        assert len(ids) == 3

    def test_build_module_without_requirements(self):
        with patch("sca_audit.builders.go.run_tool", return_value=_completed("")):
            trees, ids = GoTreeBuilder().build(AuditParams())
        assert trees == []
        assert ids == []


# ── Python ──


_PIPDEPTREE = [
    {
        "key": "flask",
        "package_name": "Flask",
        "installed_version": "3.0.0",
        "dependencies": [{"key": "jinja2", "package_name": "Jinja2", "installed_version": "3.1.2", "dependencies": []}],
    },
    {"key": "pip", "package_name": "pip", "installed_version": "23.3", "dependencies": []},
    {"key": "black", "package_name": "black", "installed_version": "23.1.0", "dependencies": []},
]


class TestPython:
    def test_requirement_names(self):
        content = "Flask==3.0.0  # web\n-r base.txt\n\nzope.interface>=5\n"
        assert requirement_names(content) == {"flask", "zope-interface"}

    def test_parse_json_tree_drops_tooling(self):
        tree = parse_json_tree(_PIPDEPTREE, "pypi://proj:0.0.0")
        assert _ids(tree) == [
            "pypi://proj:0.0.0",
            "pypi://flask:3.0.0",
            "pypi://jinja2:3.1.2",
            "pypi://black:23.1.0",
        ]

    def test_parse_json_tree_keep_roots(self):
        tree = parse_json_tree(_PIPDEPTREE, "pypi://proj:0.0.0", keep_roots={"flask"})
        assert [n.id for n in tree.nodes] == ["pypi://flask:3.0.0"]

    def test_pip_build_restricts_to_requirements(self, tmp_path: Path, monkeypatch):
        (tmp_path / "requirements.txt").write_text("flask\n")
        monkeypatch.chdir(tmp_path)
        with patch("sca_audit.builders.python.run_tool", return_value=_completed(json.dumps(_PIPDEPTREE))) as run:
            trees, ids = PythonTreeBuilder(Technology.PIP).build(AuditParams())
        assert run.call_args.args[0][0] == "pipdeptree"
        assert ids == ["pypi://flask:3.0.0", "pypi://jinja2:3.1.2"]

    def test_pipenv_command(self):
        assert PythonTreeBuilder(Technology.PIPENV)._command() == ["pipenv", "graph", "--json-tree"]

    def test_non_python_technology(self):
        with pytest.raises(ValueError):
            PythonTreeBuilder(Technology.NPM)

    def test_unparseable_output(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with patch("sca_audit.builders.python.run_tool", return_value=_completed("not json")):
            with pytest.raises(AuditError):
                PythonTreeBuilder(Technology.POETRY).build(AuditParams())


# ── Maven / Gradle ──


_TGF = """\
1 org.acme:core:jar:1.0
2 com.google.guava:guava:jar:32.1.2-jre:compile
3 com.google.guava:failureaccess:jar:1.0.1:compile
#
1 2 compile
2 3 compile
4 org.acme:web:war:1.0
5 org.acme:core:jar:1.0:compile
#
4 5 compile
"""


class TestMaven:
    def test_coordinate_with_classifier(self):
        assert maven_coordinate_id("g:a:jar:tests:1.2:test") == "gav://g:a:1.2"
        assert maven_coordinate_id("g:a:jar:1.2:compile") == "gav://g:a:1.2"

    def test_bad_coordinate(self):
        with pytest.raises(AuditError):
            maven_coordinate_id("g:a")

    def test_parse_tgf_one_tree_per_module(self):
        trees = parse_tgf(_TGF)
        assert [t.id for t in trees] == ["gav://org.acme:core:1.0", "gav://org.acme:web:1.0"]
        assert _ids(trees[0]) == [
            "gav://org.acme:core:1.0",
            "gav://com.google.guava:guava:32.1.2-jre",
            "gav://com.google.guava:failureaccess:1.0.1",
        ]
        assert _ids(trees[1]) == ["gav://org.acme:web:1.0", "gav://org.acme:core:1.0"]

    def test_mirror_settings(self):
        params = AuditParams(
            deps_repo="maven-remote",
            server_details=ServerDetails(url="https://acme.example", user="u&1", password="p<w>"),
        )
        settings = _mirror_settings(params)
        assert "<url>https://acme.example/artifactory/maven-remote</url>" in settings
        assert "u&amp;1" in settings
        assert "p&lt;w&gt;" in settings

    def test_no_mirror_without_repo(self):
        assert _mirror_settings(AuditParams()) == ""


_GRADLE_OUTPUT = """\
runtimeClasspath - Runtime classpath of source set 'main'.
+--- project :common
|    \\--- org.slf4j:slf4j-api:2.0.9
+--- com.squareup.okhttp3:okhttp:4.12.0
|    +--- com.squareup.okio:okio:3.6.0
|    \\--- org.jetbrains.kotlin:kotlin-stdlib:1.8.21 -> 1.9.10
+--- org.apache.commons:commons-lang3:3.13.0 (c)
\\--- com.google.guava:guava:32.1.2-jre FAILED
"""


class TestGradle:
    def test_parse_dependencies(self):
        tree = parse_gradle_dependencies(_GRADLE_OUTPUT, "gav://acme:app:unspecified")
        assert [n.id for n in tree.nodes] == [
            "gav://org.slf4j:slf4j-api:2.0.9",
            "gav://com.squareup.okhttp3:okhttp:4.12.0",
        ]
        assert [n.id for n in tree.nodes[1].nodes] == [
            "gav://com.squareup.okio:okio:3.6.0",
            "gav://org.jetbrains.kotlin:kotlin-stdlib:1.9.10",
        ]


# ── NuGet ──


_ASSETS = {
    "targets": {
        "net8.0": {
            "Newtonsoft.Json/13.0.3": {"type": "package", "dependencies": {}},
            "Serilog.Sinks.Console/5.0.0": {"type": "package", "dependencies": {"Serilog": "3.1.1"}},
            "Serilog/3.1.1": {"type": "package"},
            "Acme.Shared/1.0.0": {"type": "project"},
        }
    },
    "project": {
        "version": "2.1.0",
        "restore": {"projectName": "Acme.Api"},
        "frameworks": {
            "net8.0": {
                "dependencies": {
                    "newtonsoft.json": {"target": "Package", "version": "[13.0.3, )"},
                    "Serilog.Sinks.Console": {"target": "Package", "version": "[5.0.0, )"},
                }
            }
        },
    },
}


class TestNuget:
    def test_parse_assets(self):
        tree = parse_assets(_ASSETS)
        assert tree.id == "nuget://Acme.Api:2.1.0"
        assert [n.id for n in tree.nodes] == [
            "nuget://Newtonsoft.Json:13.0.3",
            "nuget://Serilog.Sinks.Console:5.0.0",
        ]
        assert [n.id for n in tree.nodes[1].nodes] == ["nuget://Serilog:3.1.1"]

    def test_find_projects_skips_build_dirs(self, tmp_path: Path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "Api.csproj").write_text("<Project />")
        (tmp_path / "src" / "obj").mkdir()
        (tmp_path / "src" / "obj" / "Generated.csproj").write_text("<Project />")
        assert find_projects(tmp_path) == [tmp_path / "src" / "Api.csproj"]
