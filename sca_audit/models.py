"""Core data types shared by the detector, builders and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sca_audit.technologies import Technology
from sca_audit.xray.models import ScanResponse


@dataclass
class GraphNode:
    """
    One dependency in a tree.
    Children are owned by their parent; a node never appears under two parents
    of the same tree instance and trees never contain cycles.
    """

    id: str
    nodes: list[GraphNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Request body shape for the graph scan API."""
        body: dict[str, Any] = {"component_id": self.id}
        if self.nodes:
            body["nodes"] = [child.to_dict() for child in self.nodes]
        return body


@dataclass
class ScaScanResult:
    """A single scan unit: one technology in one working directory."""

    working_directory: str
    technology: Technology
    descriptors: list[str] = field(default_factory=list)
    is_multiple_root_project: bool | None = None
    xray_results: list[ScanResponse] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "working_directory": self.working_directory,
            "technology": self.technology.value,
            "descriptors": list(self.descriptors),
            "is_multiple_root_project": self.is_multiple_root_project,
            "xray_results": [r.model_dump(mode="json") for r in self.xray_results],
        }


@dataclass
class AuditResults:
    """Aggregated output of one audit run."""

    sca_results: list[ScaScanResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"sca_results": [r.to_dict() for r in self.sca_results]}
