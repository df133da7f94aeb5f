"""Audit parameters shared by every scan unit of a run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sca_audit.config import ServerDetails
from sca_audit.progress import ProgressTracker
from sca_audit.technologies import Technology
from sca_audit.xray.models import Severity


@dataclass
class GraphScanParams:
    """Extra context sent along with every graph scan request."""

    project_key: str = ""
    repo_path: str = ""
    watches: list[str] = field(default_factory=list)
    include_vulnerabilities: bool = True
    include_licenses: bool = False

    def query(self) -> dict[str, Any]:
        q: dict[str, Any] = {}
        if self.project_key:
            q["project"] = self.project_key
        if self.repo_path:
            q["repo_path"] = self.repo_path
        if self.watches:
            q["watch"] = list(self.watches)
        return q


@dataclass
class AuditParams:
    """
    Process-wide audit configuration.
    Fixed once the CLI has parsed its options; afterwards only the resolution
    resolver (server_details, deps_repo) and the applicability-dependency
    accumulator write to it, one scan unit at a time.
    """

    working_dirs: list[str] = field(default_factory=list)
    technologies: list[Technology] = field(default_factory=list)
    exclusions: list[str] = field(default_factory=list)
    pip_requirements_file: str = ""
    fixable_only: bool = False
    min_severity: Severity | None = None
    third_party_applicability_scan: bool = False
    ignore_config_file: bool = False
    deps_repo: str = ""
    server_details: ServerDetails | None = None
    xray_version: str = ""
    graph_scan_params: GraphScanParams = field(default_factory=GraphScanParams)
    progress: ProgressTracker | None = None
    dependencies_for_applicability_scan: set[str] = field(default_factory=set)

    def requested_descriptors(self) -> dict[Technology, list[str]]:
        """Descriptors the user pointed at explicitly, keyed by technology."""
        descriptors: dict[Technology, list[str]] = {}
        if self.pip_requirements_file:
            descriptors[Technology.PIP] = [self.pip_requirements_file]
        return descriptors

    def append_dependencies_for_applicability_scan(self, dependencies: list[str] | set[str]) -> None:
        self.dependencies_for_applicability_scan.update(dependencies)
