"""Resolve the dependencies repository for a technology from project config.

A project may pin the repository its dependencies are resolved from in
``.jfrog/projects/<technology>.yaml`` (looked up from the working directory
upwards). When such a file exists its server and repository are written into
the audit params before the dependency tree is built.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from sca_audit.config import ServerRegistry, read_resolution_config
from sca_audit.exceptions import AuditError, ResolutionConfigError
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology

log = structlog.get_logger("sca_audit.resolution")

PROJECT_CONFIG_DIR = ".jfrog"
PROJECTS_SUBDIR = "projects"


def find_project_config(technology: Technology, start_dir: Path | str | None = None) -> Path | None:
    """Return ``<dir>/.jfrog/projects/<technology>.yaml`` for the nearest ancestor holding one."""
    current = Path(start_dir or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / PROJECT_CONFIG_DIR / PROJECTS_SUBDIR / f"{technology.value}.yaml"
        if candidate.is_file():
            return candidate
    return None


def set_resolution_repo_if_exists(
    params: AuditParams,
    technology: Technology,
    *,
    servers: ServerRegistry | None = None,
    start_dir: Path | str | None = None,
) -> None:
    """Populate ``params.deps_repo`` / ``params.server_details`` from a config file.

    No-op when a repository is already set or config files are ignored. A
    missing file means the technology's default registry is used. A file that
    exists but cannot be read or points at an unknown server raises
    ``ResolutionConfigError``.
    """
    if params.deps_repo or params.ignore_config_file:
        return

    config_path = find_project_config(technology, start_dir)
    if config_path is None and technology is Technology.NUGET:
        # NuGet and .NET are detected alike and only NuGet is scanned, so a
        # dotnet.yaml applies to it as well.
        config_path = find_project_config(Technology.DOTNET, start_dir)
        if config_path is None:
            log.debug(
                "resolution.no_config",
                technology=technology.value,
                searched=[f"{Technology.NUGET.value}.yaml", f"{Technology.DOTNET.value}.yaml"],
            )
            return
    elif config_path is None:
        log.debug("resolution.no_config", technology=technology.value, searched=[f"{technology.value}.yaml"])
        return

    log.debug("resolution.config_found", technology=technology.value, path=str(config_path))
    try:
        config = read_resolution_config(config_path)
    except ResolutionConfigError as e:
        raise ResolutionConfigError(f"failed while reading {technology.value}.yaml config file: {e}") from e

    try:
        registry = servers if servers is not None else ServerRegistry.load()
        details = registry.get(config.resolver.server_id)
    except AuditError as e:
        raise ResolutionConfigError(f"failed getting server details: {e}") from e

    params.server_details = details
    params.deps_repo = config.target_repo
    log.info(
        "resolution.repo_set",
        technology=technology.value,
        repo=config.target_repo,
        server_id=details.server_id,
    )
