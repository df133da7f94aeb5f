"""Client and response models for the dependency graph scan backend."""

from sca_audit.xray.client import ScanGraphParams, XrayGraphScanClient, run_dependency_tree_scan_graph
from sca_audit.xray.models import ScanResponse, Severity

__all__ = [
    "ScanGraphParams",
    "ScanResponse",
    "Severity",
    "XrayGraphScanClient",
    "run_dependency_tree_scan_graph",
]
