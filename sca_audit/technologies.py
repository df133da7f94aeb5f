"""Supported package-manager technologies."""

from __future__ import annotations

from enum import Enum


class Technology(str, Enum):
    """Package managers and build tools that can be audited."""

    MAVEN = "maven"
    GRADLE = "gradle"
    NPM = "npm"
    YARN = "yarn"
    GO = "go"
    PIP = "pip"
    PIPENV = "pipenv"
    POETRY = "poetry"
    NUGET = "nuget"
    DOTNET = "dotnet"

    def __str__(self) -> str:
        return self.value

    @property
    def formal(self) -> str:
        """Human readable name, used in log and error messages."""
        return _FORMAL_NAMES[self]

    @property
    def package_type(self) -> str:
        """Component id prefix understood by the scan backend."""
        return _PACKAGE_TYPES[self]

    @classmethod
    def parse(cls, value: str) -> Technology:
        try:
            return cls(value.strip().lower())
        except ValueError:
            supported = ", ".join(t.value for t in cls)
            raise ValueError(f"unknown technology '{value}' (supported: {supported})") from None


_FORMAL_NAMES: dict[Technology, str] = {
    Technology.MAVEN: "Maven",
    Technology.GRADLE: "Gradle",
    Technology.NPM: "npm",
    Technology.YARN: "Yarn",
    Technology.GO: "Go",
    Technology.PIP: "Pip",
    Technology.PIPENV: "Pipenv",
    Technology.POETRY: "Poetry",
    Technology.NUGET: "NuGet",
    Technology.DOTNET: ".NET",
}

_PACKAGE_TYPES: dict[Technology, str] = {
    Technology.MAVEN: "gav",
    Technology.GRADLE: "gav",
    Technology.NPM: "npm",
    Technology.YARN: "npm",
    Technology.GO: "go",
    Technology.PIP: "pypi",
    Technology.PIPENV: "pypi",
    Technology.POETRY: "pypi",
    Technology.NUGET: "nuget",
    Technology.DOTNET: "nuget",
}


def component_id(technology: Technology, name: str, version: str) -> str:
    """Build a scan-backend component id, e.g. ``npm://lodash:4.17.21``."""
    return f"{technology.package_type}://{name}:{version}"
