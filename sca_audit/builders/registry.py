"""Builder registry — one dependency tree builder per technology."""

from __future__ import annotations

import structlog

from sca_audit.builders.base import DependencyTreeBuilder
from sca_audit.exceptions import UnsupportedTechnologyError
from sca_audit.technologies import Technology

log = structlog.get_logger("sca_audit.builders")


class BuilderRegistry:
    """Technology -> builder lookup."""

    def __init__(self) -> None:
        self._builders: dict[Technology, DependencyTreeBuilder] = {}

    def register(self, builder: DependencyTreeBuilder) -> None:
        self._builders[builder.technology] = builder
        log.debug("builders.registered", technology=builder.technology.value)

    def get(self, technology: Technology) -> DependencyTreeBuilder:
        builder = self._builders.get(technology)
        if builder is None:
            raise UnsupportedTechnologyError(technology.value)
        return builder


def create_default_registry() -> BuilderRegistry:
    """Registry with every built-in builder."""
    from sca_audit.builders.go import GoTreeBuilder
    from sca_audit.builders.java import GradleTreeBuilder, MavenTreeBuilder
    from sca_audit.builders.npm import NpmTreeBuilder
    from sca_audit.builders.nuget import NugetTreeBuilder
    from sca_audit.builders.python import PythonTreeBuilder
    from sca_audit.builders.yarn import YarnTreeBuilder

    registry = BuilderRegistry()
    for builder in (
        MavenTreeBuilder(),
        GradleTreeBuilder(),
        NpmTreeBuilder(),
        YarnTreeBuilder(),
        GoTreeBuilder(),
        PythonTreeBuilder(Technology.PIP),
        PythonTreeBuilder(Technology.PIPENV),
        PythonTreeBuilder(Technology.POETRY),
        NugetTreeBuilder(),
    ):
        registry.register(builder)
    return registry
