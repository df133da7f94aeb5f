"""Graph scan response schemas."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class Severity(str, Enum):
    UNKNOWN = "Unknown"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: str | None) -> Severity:
        """Case-insensitive lookup; anything unrecognised is Unknown."""
        if not value:
            return cls.UNKNOWN
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        return cls.UNKNOWN


_SEVERITY_RANK = {
    Severity.UNKNOWN: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class ImpactPathNode(BaseModel):
    component_id: str
    full_path: str | None = None


class ComponentDetails(BaseModel):
    """Per-component data of an issue: fix versions and impact paths."""

    fixed_versions: list[str] = Field(default_factory=list)
    impact_paths: list[list[ImpactPathNode]] = Field(default_factory=list)


class Cve(BaseModel):
    cve: str | None = None
    cvss_v2_score: str | None = None
    cvss_v3_score: str | None = None


class Vulnerability(BaseModel):
    issue_id: str = ""
    summary: str = ""
    severity: str = Severity.UNKNOWN.value
    cves: list[Cve] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    components: dict[str, ComponentDetails] = Field(default_factory=dict)


class Violation(Vulnerability):
    type: str = ""
    watch_name: str | None = None
    policies: list[dict] = Field(default_factory=list)
    license_key: str | None = None


class License(BaseModel):
    license_key: str = ""
    name: str = ""
    components: dict[str, ComponentDetails] = Field(default_factory=dict)


class ScanResponse(BaseModel):
    """One finished graph scan, as returned by ``GET /api/v1/scan/graph/{id}``."""

    scan_id: str = ""
    package_type: str | None = None
    vulnerabilities: list[Vulnerability] = Field(default_factory=list)
    violations: list[Violation] = Field(default_factory=list)
    licenses: list[License] = Field(default_factory=list)
