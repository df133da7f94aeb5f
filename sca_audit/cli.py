"""CLI entry point: sca-audit.

Subcommands:
    sca-audit audit                       # SCA scan of the current directory (recursive)
    sca-audit audit --working-dirs a,b    # Scan the given directories only
    sca-audit detect /path/to/project     # Print detected technologies and descriptors
"""

from __future__ import annotations

import json
import os
import sys

import click

from sca_audit.config import ServerRegistry
from sca_audit.core.logging import setup_logging
from sca_audit.detection import TechnologyDetector, prepare_exclude_pattern
from sca_audit.exceptions import AuditError, ScaScanError
from sca_audit.models import AuditResults
from sca_audit.orchestrator import run_sca_scan
from sca_audit.params import AuditParams
from sca_audit.progress import ProgressTracker
from sca_audit.technologies import Technology
from sca_audit.xray.models import Severity


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_technologies(value: str | None) -> list[Technology]:
    try:
        return [Technology.parse(v) for v in _split_csv(value)]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--technologies") from e


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
def main(verbose: bool) -> None:
    """sca-audit: software composition analysis of local projects."""
    setup_logging(verbose=verbose)


@main.command("audit")
@click.option("--working-dirs", default=None, help="Comma-separated directories to scan (non-recursive)")
@click.option("--technologies", default=None, help="Comma-separated technologies to scan, e.g. npm,maven")
@click.option("--exclusions", default=None, help="Comma-separated glob patterns to skip while detecting")
@click.option("--requirements-file", default="", help="Pip requirements file to build the tree from")
@click.option("--fixable-only", is_flag=True, help="Only report issues that have a fixed version")
@click.option(
    "--min-severity",
    type=click.Choice([s.value for s in Severity], case_sensitive=False),
    default=None,
    help="Drop issues below this severity",
)
@click.option(
    "--third-party-contextual-analysis",
    is_flag=True,
    help="Collect every npm dependency for applicability scanning",
)
@click.option("--ignore-config-file", is_flag=True, help="Ignore .jfrog/projects/<tech>.yaml")
@click.option("--deps-repo", default="", help="Repository to resolve dependencies from")
@click.option("--server-id", default="", help="Configured server to scan with (default server if empty)")
@click.option("--project", "project_key", default="", help="Project key sent with the scan")
@click.option("--watches", default=None, help="Comma-separated watch names sent with the scan")
@click.option("--json", "as_json", is_flag=True, help="Print the full results as JSON")
def audit(
    working_dirs: str | None,
    technologies: str | None,
    exclusions: str | None,
    requirements_file: str,
    fixable_only: bool,
    min_severity: str | None,
    third_party_contextual_analysis: bool,
    ignore_config_file: bool,
    deps_repo: str,
    server_id: str,
    project_key: str,
    watches: str | None,
    as_json: bool,
) -> None:
    """Detect technologies, build dependency trees and scan them."""
    params = AuditParams(
        working_dirs=_split_csv(working_dirs),
        technologies=_parse_technologies(technologies),
        exclusions=_split_csv(exclusions),
        pip_requirements_file=requirements_file,
        fixable_only=fixable_only,
        min_severity=Severity.parse(min_severity) if min_severity else None,
        third_party_applicability_scan=third_party_contextual_analysis,
        ignore_config_file=ignore_config_file,
        deps_repo=deps_repo,
        progress=ProgressTracker(),
    )
    params.graph_scan_params.project_key = project_key
    params.graph_scan_params.watches = _split_csv(watches)

    try:
        servers = ServerRegistry.load()
        params.server_details = servers.get(server_id)
    except AuditError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    results = AuditResults()
    failed = False
    try:
        run_sca_scan(params, results, servers=servers)
    except ScaScanError as e:
        failed = True
        click.echo(f"Error: {e}", err=True)

    if as_json:
        click.echo(json.dumps(results.to_dict(), indent=2))
    else:
        _print_summary(results)
    if failed:
        sys.exit(1)


def _print_summary(results: AuditResults) -> None:
    if not results.sca_results:
        click.echo("No scan results.")
        return
    for scan in results.sca_results:
        vulns = sum(len(r.vulnerabilities) for r in scan.xray_results)
        violations = sum(len(r.violations) for r in scan.xray_results)
        licenses = sum(len(r.licenses) for r in scan.xray_results)
        click.echo(f"\n{scan.technology.formal}: {scan.working_directory}")
        click.echo(f"  Vulnerabilities: {vulns}")
        click.echo(f"  Violations: {violations}")
        click.echo(f"  Licenses: {licenses}")
        if scan.is_multiple_root_project:
            click.echo("  Multiple roots: yes")


@main.command("detect")
@click.argument("path", type=click.Path(exists=True, file_okay=False), default=".")
@click.option("--technologies", default=None, help="Comma-separated technologies to report even if undetected")
@click.option("--exclusions", default=None, help="Comma-separated glob patterns to skip")
@click.option("--no-recursive", is_flag=True, help="Only look at PATH itself")
def detect(path: str, technologies: str | None, exclusions: str | None, no_recursive: bool) -> None:
    """Print the technologies detected under PATH with their descriptors."""
    detector = TechnologyDetector()
    try:
        detected = detector.detect(
            os.path.abspath(path),
            not no_recursive,
            _parse_technologies(technologies),
            None,
            prepare_exclude_pattern(_split_csv(exclusions)),
        )
    except AuditError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps({tech.value: dirs for tech, dirs in detected.items()}, indent=2))


if __name__ == "__main__":
    main()
