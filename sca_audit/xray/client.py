"""Synchronous client for the Xray dependency graph scan API.

The request is the flattened tree (``root`` + one leaf per dependency). A scan
is started with ``POST /api/v1/scan/graph`` and its result polled from
``GET /api/v1/scan/graph/{scan_id}`` until the server stops answering 202.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from sca_audit.config import ServerDetails
from sca_audit.exceptions import ScanBackendError
from sca_audit.progress import ProgressTracker
from sca_audit.technologies import Technology
from sca_audit.xray.models import ComponentDetails, ScanResponse, Severity

if TYPE_CHECKING:
    from sca_audit.models import GraphNode
    from sca_audit.params import GraphScanParams

log = structlog.get_logger("sca_audit.xray")

_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 1.0  # seconds
_POLL_INTERVAL = 5.0  # seconds
_MAX_POLL_SECONDS = 1800.0

SCAN_GRAPH_PATH = "api/v1/scan/graph"
VERSION_PATH = "api/v1/system/version"

# first Xray release serving the graph scan API
GRAPH_SCAN_MIN_XRAY_VERSION = "3.29.0"


@dataclass
class ScanGraphParams:
    """Everything a graph scan needs besides the tree itself."""

    server_details: ServerDetails
    graph_scan_params: GraphScanParams | None = None
    xray_version: str = ""
    fixable_only: bool = False
    severity_level: Severity | None = None
    extra_query: dict[str, Any] = field(default_factory=dict)


class XrayGraphScanClient:
    """Thin wrapper around the graph scan endpoints."""

    def __init__(
        self,
        server_details: ServerDetails,
        *,
        timeout: float = 60.0,
        poll_interval: float = _POLL_INTERVAL,
        max_poll_seconds: float = _MAX_POLL_SECONDS,
    ) -> None:
        base_url = server_details.resolved_xray_url()
        if not base_url:
            raise ScanBackendError(f"no Xray URL configured for server '{server_details.server_id}'")
        self.poll_interval = poll_interval
        self.max_poll_seconds = max_poll_seconds
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Accept": "application/json", **server_details.headers()},
            auth=server_details.auth(),
            timeout=timeout,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> XrayGraphScanClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ── public ─────────────────────────────────────────────────────────────

    def get_version(self) -> str:
        resp = self._request_with_retry("GET", VERSION_PATH)
        return resp.json().get("xray_version", "")

    def scan_graph(self, tree: GraphNode, params: ScanGraphParams) -> ScanResponse:
        """Start a graph scan and wait for its result."""
        query: dict[str, Any] = dict(params.extra_query)
        if params.graph_scan_params is not None:
            query.update(params.graph_scan_params.query())
        resp = self._request_with_retry("POST", SCAN_GRAPH_PATH, params=query, json=tree.to_dict())
        scan_id = resp.json().get("scan_id")
        if not scan_id:
            raise ScanBackendError("graph scan request returned no scan_id")
        log.debug("xray.scan_started", scan_id=scan_id, nodes=len(tree.nodes))
        return self._wait_for_result(scan_id, params)

    # ── internal ───────────────────────────────────────────────────────────

    def _wait_for_result(self, scan_id: str, params: ScanGraphParams) -> ScanResponse:
        graph = params.graph_scan_params
        query: dict[str, str] = {}
        if graph is None or graph.include_vulnerabilities:
            query["include_vulnerabilities"] = "true"
        if graph is not None and graph.include_licenses:
            query["include_licenses"] = "true"
        deadline = time.monotonic() + self.max_poll_seconds
        while True:
            resp = self._request_with_retry("GET", f"{SCAN_GRAPH_PATH}/{scan_id}", params=query)
            if resp.status_code != 202:
                try:
                    return ScanResponse.model_validate(resp.json())
                except ValidationError as e:
                    raise ScanBackendError(f"unexpected graph scan response: {e}") from e
            if time.monotonic() >= deadline:
                raise ScanBackendError(
                    f"graph scan {scan_id} did not finish within {self.max_poll_seconds:.0f} seconds"
                )
            time.sleep(self.poll_interval)

    def _request_with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Request with exponential backoff on 5xx and timeout errors."""
        last_exc: Exception | None = None
        for attempt in range(_MAX_RETRIES):
            try:
                resp = self._client.request(method, url, **kwargs)
                if resp.status_code < 500:
                    try:
                        resp.raise_for_status()
                    except httpx.HTTPStatusError as e:
                        raise ScanBackendError(
                            f"{method} {url} returned {resp.status_code}: {resp.text.strip()}"
                        ) from e
                    return resp

                log.warning(
                    "xray.server_error",
                    url=url,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=_MAX_RETRIES,
                )
                last_exc = ScanBackendError(f"{method} {url} returned {resp.status_code}")
            except httpx.TimeoutException as exc:
                log.warning("xray.timeout", url=url, attempt=attempt + 1, max_retries=_MAX_RETRIES)
                last_exc = ScanBackendError(f"{method} {url} timed out: {exc}")
            except httpx.TransportError as exc:
                raise ScanBackendError(f"{method} {url} failed: {exc}") from exc

            if attempt < _MAX_RETRIES - 1:
                time.sleep(_RETRY_BASE_DELAY * (2**attempt))

        raise last_exc  # type: ignore[misc]


def _filter_components(
    components: dict[str, ComponentDetails], fixable_only: bool
) -> dict[str, ComponentDetails]:
    if not fixable_only:
        return components
    return {cid: c for cid, c in components.items() if c.fixed_versions}


def filter_scan_response(
    response: ScanResponse,
    *,
    fixable_only: bool = False,
    min_severity: Severity | None = None,
) -> ScanResponse:
    """Drop issues below *min_severity* and, with *fixable_only*, unfixable components.

    Issues left without components are dropped too. Licenses are not filtered.
    """

    def _keep(issue: Any) -> bool:
        if min_severity is not None and Severity.parse(issue.severity).rank < min_severity.rank:
            return False
        issue.components = _filter_components(issue.components, fixable_only)
        return bool(issue.components)

    response.vulnerabilities = [v for v in response.vulnerabilities if _keep(v)]
    response.violations = [v for v in response.violations if _keep(v)]
    return response


def _version_key(version: str) -> tuple[int, ...]:
    parts: list[int] = []
    for part in version.strip().split("."):
        m = re.match(r"\d+", part)
        if m is None:
            break
        parts.append(int(m.group()))
    return tuple(parts + [0] * (3 - len(parts)))


def validate_graph_scan_version(xray_version: str) -> None:
    """Raise ``ScanBackendError`` if *xray_version* predates the graph scan API."""
    if _version_key(xray_version) < _version_key(GRAPH_SCAN_MIN_XRAY_VERSION):
        raise ScanBackendError(
            f"the graph scan requires Xray {GRAPH_SCAN_MIN_XRAY_VERSION} or higher, "
            f"but the configured server runs version '{xray_version}'"
        )


def run_dependency_tree_scan_graph(
    flat_tree: GraphNode,
    progress: ProgressTracker | None,
    technology: Technology,
    params: ScanGraphParams,
    client: XrayGraphScanClient | None = None,
) -> list[ScanResponse]:
    """Scan one technology's flattened tree and return the filtered responses.

    The server version is fetched once and cached on *params* when unknown.
    The request is tagged with the technology.
    """
    if progress is not None:
        progress.set_headline_msg(f"Scanning {len(flat_tree.nodes)} {technology.formal} dependencies")
    log.info("xray.scan_graph", technology=technology.value, dependencies=len(flat_tree.nodes))

    owned = client is None
    scan_client = client or XrayGraphScanClient(params.server_details)
    try:
        if not params.xray_version:
            params.xray_version = scan_client.get_version()
        validate_graph_scan_version(params.xray_version)
        tagged = replace(params, extra_query={**params.extra_query, "technology": technology.value})
        response = scan_client.scan_graph(flat_tree, tagged)
    finally:
        if owned:
            scan_client.close()

    if not response.package_type:
        response.package_type = technology.package_type
    return [
        filter_scan_response(
            response,
            fixable_only=params.fixable_only,
            min_severity=params.severity_level,
        )
    ]
