"""Custom exceptions for sca-audit."""

from __future__ import annotations


class AuditError(Exception):
    """Base exception for all audit errors."""


class DetectionError(AuditError):
    """Raised when technologies cannot be detected in a directory."""


class UnsupportedTechnologyError(AuditError):
    """Raised when no dependency tree builder is registered for a technology."""

    def __init__(self, technology: str):
        self.technology = technology
        super().__init__(f"{technology} is currently not supported")


class ToolExecutionError(AuditError):
    """Raised when an ecosystem tool exits with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = f":\n{stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"'{' '.join(command)}' exited with status {returncode}{detail}")


class TreeBuildError(AuditError):
    """Raised when a technology's dependency tree could not be built."""

    def __init__(self, technology: str, cause: BaseException | str):
        self.technology = technology
        super().__init__(f"failed while building '{technology}' dependency tree:\n{cause}")


class NoDependenciesError(AuditError):
    """Raised when a dependency tree was built but contains no dependencies."""

    def __init__(self, technology: str):
        self.technology = technology
        super().__init__(
            f"no {technology} dependencies were found. "
            "Please try to build your project and re-run the audit command"
        )


class ResolutionConfigError(AuditError):
    """Raised when a resolution config file exists but cannot be used."""


class ScanBackendError(AuditError):
    """Raised when the dependency graph scan request fails."""


class ScaScanError(AuditError):
    """Aggregate of every scan unit failure of one run."""

    def __init__(self, errors: list[BaseException]):
        self.errors = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))


class ScanUnitError(AuditError):
    """One scan unit (technology in a working directory) failed."""

    def __init__(self, technology: str, working_directory: str, cause: BaseException):
        self.technology = technology
        self.working_directory = working_directory
        self.cause = cause
        super().__init__(f"audit command in '{working_directory}' failed:\n{cause}")
