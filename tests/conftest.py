"""Shared pytest fixtures for sca-audit tests."""

import json
from pathlib import Path

import pytest
import structlog

from sca_audit.config import ServerDetails
from sca_audit.models import GraphNode
from sca_audit.params import AuditParams


@pytest.fixture(autouse=True, scope="session")
def _route_structlog_through_stdlib():
    """Keep structlog output off stdout so CLI output stays parseable."""
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def server_details():
    return ServerDetails(server_id="test", url="https://acme.example", access_token="tkn")


@pytest.fixture
def audit_params(server_details):
    return AuditParams(server_details=server_details, ignore_config_file=True)


@pytest.fixture
def npm_project(tmp_path: Path) -> Path:
    """app@1.0.0 -> a@1.0.0 -> b@2.0.0, and app -> b@2.0.0 directly."""
    (tmp_path / "package.json").write_text(
        json.dumps({"name": "app", "version": "1.0.0", "dependencies": {"a": "^1.0.0", "b": "^2.0.0"}})
    )
    return tmp_path


@pytest.fixture
def npm_tree() -> GraphNode:
    return GraphNode(
        id="npm://app:1.0.0",
        nodes=[
            GraphNode(id="npm://a:1.0.0", nodes=[GraphNode(id="npm://b:2.0.0")]),
            GraphNode(id="npm://b:2.0.0"),
        ],
    )
