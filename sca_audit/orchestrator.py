"""SCA scan orchestrator — detect, build, flatten, scan, attach impact paths.

Scan units (one technology in one working directory) run strictly one after
the other: every ecosystem tool resolves paths against the process working
directory, which the orchestrator switches to each unit's directory and
restores when the run ends, however it ends.
"""

from __future__ import annotations

import json
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from sca_audit.builders.registry import BuilderRegistry, create_default_registry
from sca_audit.config import ServerDetails, ServerRegistry
from sca_audit.detection import TechnologyDetector, prepare_exclude_pattern
from sca_audit.exceptions import (
    AuditError,
    DetectionError,
    NoDependenciesError,
    ScaScanError,
    ScanBackendError,
    ScanUnitError,
    TreeBuildError,
)
from sca_audit.impact import build_impact_paths_for_scan_responses
from sca_audit.models import AuditResults, GraphNode, ScaScanResult
from sca_audit.params import AuditParams
from sca_audit.progress import ProgressTracker
from sca_audit.resolution import set_resolution_repo_if_exists
from sca_audit.technologies import Technology
from sca_audit.tree import direct_dependencies, flatten
from sca_audit.xray.client import ScanGraphParams, run_dependency_tree_scan_graph
from sca_audit.xray.models import ScanResponse

log = structlog.get_logger("sca_audit.orchestrator")

Scanner = Callable[[GraphNode, ProgressTracker | None, Technology, ScanGraphParams], list[ScanResponse]]


@contextmanager
def working_directory(errors: list[BaseException]) -> Iterator[str]:
    """Capture the current directory and restore it on exit.

    A failure to restore is appended to *errors* instead of masking whatever
    the body raised.
    """
    original = os.getcwd()
    try:
        yield original
    finally:
        try:
            os.chdir(original)
        except OSError as e:
            errors.append(AuditError(f"failed to return to the original working directory '{original}': {e}"))


@contextmanager
def _unit_resolution_scope(params: AuditParams) -> Iterator[None]:
    """Keep a resolver-discovered repository from leaking into the next unit."""
    deps_repo, server_details = params.deps_repo, params.server_details
    try:
        yield
    finally:
        params.deps_repo, params.server_details = deps_repo, server_details


def requested_directories(current_dir: str, params: AuditParams) -> tuple[list[str], bool]:
    """Directories to scan and whether to scan them recursively.

    Without explicit working dirs the current directory is scanned recursively;
    explicit dirs are scanned as given, non-recursively.
    """
    if not params.working_dirs:
        return [current_dir], True
    dirs = dict.fromkeys(str(Path(current_dir, wd).resolve()) for wd in params.working_dirs)
    return list(dirs), False


def should_use_all_dependencies(third_party_applicability_scan: bool, technology: Technology) -> bool:
    """Whether applicability scanning gets every dependency instead of the direct ones.

    pipdeptree reports some direct dependencies as transitive, so Pip always
    sends everything; npm does when third-party scanning was requested.
    """
    return technology is Technology.PIP or (
        third_party_applicability_scan and technology is Technology.NPM
    )


class ScaScanOrchestrator:
    """
    Run the SCA part of an audit over every detected technology.

    Collaborators are injectable so each stage can be replaced in tests:
    detector (technology detection), registry (tree builders per technology),
    scanner (graph scan backend) and servers (server lookup for resolution
    config files).
    """

    def __init__(
        self,
        detector: TechnologyDetector | None = None,
        registry: BuilderRegistry | None = None,
        scanner: Scanner | None = None,
        servers: ServerRegistry | None = None,
    ) -> None:
        self.detector = detector or TechnologyDetector()
        self.registry = registry or create_default_registry()
        self.scanner: Scanner = scanner or run_dependency_tree_scan_graph
        self.servers = servers

    def run(self, params: AuditParams, results: AuditResults) -> None:
        """Scan every unit; successful units are appended to *results*.

        Raises ``ScaScanError`` after all units ran if any of them failed.
        """
        errors: list[BaseException] = []
        current_dir = os.getcwd()

        scans = self.scans_to_perform(current_dir, params)
        if not scans:
            log.info(
                "Couldn't determine a package manager or build tool used by this project. "
                "Skipping the SCA scan..."
            )
            return
        planned = [
            {
                "working_directory": s.working_directory,
                "technology": s.technology.value,
                "descriptors": s.descriptors,
            }
            for s in scans
        ]
        log.info("sca.scans_planned", count=len(scans), scans=json.dumps(planned, indent=2))
        scan_params = self._scan_graph_params(params)

        with working_directory(errors):
            for scan in scans:
                progress = params.progress
                unit = (
                    progress.start_unit(scan.technology.value, scan.working_directory)
                    if progress is not None
                    else None
                )
                log.info(
                    "sca.scan_started",
                    technology=scan.technology.value,
                    working_directory=scan.working_directory,
                )
                try:
                    self.execute_scan(params, scan, scan_params)
                except Exception as e:
                    log.warning(
                        "sca.scan_failed",
                        technology=scan.technology.value,
                        working_directory=scan.working_directory,
                        error=str(e),
                    )
                    if unit is not None:
                        progress.fail_unit(unit, str(e))
                    errors.append(ScanUnitError(scan.technology.value, scan.working_directory, e))
                    continue
                if unit is not None:
                    progress.finish_unit(unit, detail=f"results={len(scan.xray_results)}")
                results.sca_results.append(scan)

        if errors:
            raise ScaScanError(errors)

    def scans_to_perform(self, current_dir: str, params: AuditParams) -> list[ScaScanResult]:
        dirs, recursive = requested_directories(current_dir, params)
        exclude_pattern = prepare_exclude_pattern(params.exclusions)
        scans: list[ScaScanResult] = []
        for requested_dir in dirs:
            try:
                tech_to_working_dirs = self.detector.detect(
                    requested_dir,
                    recursive,
                    params.technologies,
                    params.requested_descriptors(),
                    exclude_pattern,
                )
            except DetectionError as e:
                log.warning("sca.detection_failed", directory=requested_dir, error=str(e))
                continue

            for tech, working_dirs in tech_to_working_dirs.items():
                if tech is Technology.DOTNET:
                    # same manifests as NuGet
                    continue
                if not working_dirs:
                    # Requested technology without indicators: scan the requested directory.
                    scans.append(ScaScanResult(working_directory=requested_dir, technology=tech))
                for working_dir, descriptors in working_dirs.items():
                    scans.append(
                        ScaScanResult(
                            working_directory=working_dir,
                            technology=tech,
                            descriptors=list(descriptors),
                        )
                    )
        return scans

    def execute_scan(self, params: AuditParams, scan: ScaScanResult, scan_params: ScanGraphParams) -> None:
        """Build, flatten and scan one unit. Changes the working directory."""
        tech = scan.technology
        try:
            os.chdir(scan.working_directory)
        except OSError as e:
            raise TreeBuildError(tech.value, e) from e
        with _unit_resolution_scope(params):
            try:
                flat_tree, full_trees = self.build_dependency_tree(params, tech)
            except Exception as e:
                raise TreeBuildError(tech.value, e) from e
        if flat_tree is None or not flat_tree.nodes:
            raise NoDependenciesError(tech.value)

        try:
            responses = self.scanner(flat_tree, params.progress, tech, scan_params)
        except Exception as e:
            raise ScanBackendError(f"'{tech.value}' Xray dependency tree scan request failed:\n{e}") from e
        responses = build_impact_paths_for_scan_responses(responses, full_trees)

        scan.is_multiple_root_project = len(full_trees) > 1
        self._add_third_party_dependencies(params, tech, flat_tree, full_trees)
        scan.xray_results.extend(responses)

    def build_dependency_tree(
        self, params: AuditParams, tech: Technology
    ) -> tuple[GraphNode | None, list[GraphNode]]:
        """Return (flattened tree or None when empty, full trees)."""
        message = f"Calculating {tech.formal} dependencies"
        log.info(message + "...")
        if params.progress is not None:
            params.progress.set_headline_msg(message)

        set_resolution_repo_if_exists(params, tech, servers=self.servers)
        builder = self.registry.get(tech)

        start = time.monotonic()
        full_trees, unique_deps = builder.build(params)
        if not unique_deps:
            return None, full_trees
        log.debug(
            "sca.tree_built",
            technology=tech.value,
            nodes=len(unique_deps),
            roots=len(full_trees),
            elapsed=round(time.monotonic() - start, 1),
        )
        return flatten(unique_deps), full_trees

    def _scan_graph_params(self, params: AuditParams) -> ScanGraphParams:
        server_details = params.server_details or self._default_server()
        return ScanGraphParams(
            server_details=server_details,
            graph_scan_params=params.graph_scan_params,
            xray_version=params.xray_version,
            fixable_only=params.fixable_only,
            severity_level=params.min_severity,
        )

    def _default_server(self) -> ServerDetails:
        if self.servers is None:
            self.servers = ServerRegistry.load()
        return self.servers.default()

    @staticmethod
    def _add_third_party_dependencies(
        params: AuditParams,
        tech: Technology,
        flat_tree: GraphNode,
        full_trees: list[GraphNode],
    ) -> None:
        if should_use_all_dependencies(params.third_party_applicability_scan, tech):
            deps = direct_dependencies([flat_tree])
        else:
            deps = direct_dependencies(full_trees)
        params.append_dependencies_for_applicability_scan(deps)


def run_sca_scan(
    params: AuditParams,
    results: AuditResults,
    **collaborators,
) -> None:
    """Convenience wrapper: ``ScaScanOrchestrator(**collaborators).run(params, results)``."""
    ScaScanOrchestrator(**collaborators).run(params, results)
