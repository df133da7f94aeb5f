"""sca-audit: detect package managers, build dependency trees, scan them for known issues."""

__version__ = "0.1.0"

from sca_audit.exceptions import AuditError, ScaScanError
from sca_audit.models import AuditResults, GraphNode, ScaScanResult
from sca_audit.orchestrator import ScaScanOrchestrator, run_sca_scan
from sca_audit.params import AuditParams
from sca_audit.technologies import Technology

__all__ = [
    "AuditError",
    "AuditParams",
    "AuditResults",
    "GraphNode",
    "ScaScanError",
    "ScaScanOrchestrator",
    "ScaScanResult",
    "Technology",
    "run_sca_scan",
]
