"""Server and resolution configuration loading.

Two documents are read here:

* the server list (``~/.jfrog/jfrog-cli.conf.v2`` by default, JSON) which maps a
  server id to its URLs and credentials;
* per-technology resolution files (``.jfrog/projects/<type>.yaml``) naming the
  repository that dependencies should be resolved from.

Both are validated with pydantic so that a malformed document surfaces as one
``ResolutionConfigError`` instead of a ``KeyError`` deep in the scan.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import httpx
import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sca_audit.exceptions import ResolutionConfigError

log = structlog.get_logger("sca_audit.config")

_ENV_SERVERS_FILE = "SCA_AUDIT_SERVERS_FILE"
_ENV_SERVER_ID = "SCA_AUDIT_SERVER_ID"
_ENV_XRAY_URL = "SCA_AUDIT_XRAY_URL"
_ENV_ACCESS_TOKEN = "SCA_AUDIT_ACCESS_TOKEN"

DEFAULT_SERVERS_FILE = Path.home() / ".jfrog" / "jfrog-cli.conf.v2"


class ServerDetails(BaseModel):
    """Connection details of one platform server."""

    model_config = ConfigDict(populate_by_name=True)

    server_id: str = Field(default="", alias="serverId")
    url: str = ""
    xray_url: str = Field(default="", alias="xrayUrl")
    artifactory_url: str = Field(default="", alias="artifactoryUrl")
    user: str = ""
    password: str = ""
    access_token: str = Field(default="", alias="accessToken")
    is_default: bool = Field(default=False, alias="isDefault")

    def resolved_xray_url(self) -> str:
        """Xray base URL, derived from the platform URL when not set explicitly."""
        if self.xray_url:
            return self.xray_url.rstrip("/") + "/"
        if self.url:
            return self.url.rstrip("/") + "/xray/"
        return ""

    def resolved_artifactory_url(self) -> str:
        if self.artifactory_url:
            return self.artifactory_url.rstrip("/") + "/"
        if self.url:
            return self.url.rstrip("/") + "/artifactory/"
        return ""

    def auth(self) -> httpx.Auth | None:
        """Basic auth for user/password servers; tokens go into headers instead."""
        if self.access_token:
            return None
        if self.user and self.password:
            return httpx.BasicAuth(self.user, self.password)
        return None

    def headers(self) -> dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}


class _ServersDocument(BaseModel):
    servers: list[ServerDetails] = Field(default_factory=list)


class ServerRegistry:
    """In-memory server list keyed by server id."""

    def __init__(self, servers: list[ServerDetails] | None = None) -> None:
        self._servers: dict[str, ServerDetails] = {}
        for server in servers or []:
            self._servers[server.server_id] = server

    @classmethod
    def load(cls, path: Path | str | None = None) -> ServerRegistry:
        """Read the servers file; a missing file yields an empty registry.

        Environment overrides (``SCA_AUDIT_XRAY_URL`` / ``SCA_AUDIT_ACCESS_TOKEN``)
        add a default server when no file is present, which is convenient in CI.
        """
        path = Path(path or os.environ.get(_ENV_SERVERS_FILE) or DEFAULT_SERVERS_FILE)
        servers: list[ServerDetails] = []
        if path.is_file():
            try:
                doc = _ServersDocument.model_validate(json.loads(path.read_text(encoding="utf-8")))
            except (json.JSONDecodeError, ValidationError) as e:
                raise ResolutionConfigError(f"invalid servers file {path}: {e}") from e
            servers = doc.servers
            log.debug("config.servers_loaded", path=str(path), count=len(servers))

        xray_url = os.environ.get(_ENV_XRAY_URL)
        if xray_url:
            servers.append(
                ServerDetails(
                    server_id=os.environ.get(_ENV_SERVER_ID, "env"),
                    xray_url=xray_url,
                    access_token=os.environ.get(_ENV_ACCESS_TOKEN, ""),
                    is_default=not any(s.is_default for s in servers),
                )
            )
        return cls(servers)

    def get(self, server_id: str | None) -> ServerDetails:
        """Return the named server, or the default one when *server_id* is empty."""
        if not server_id:
            return self.default()
        server = self._servers.get(server_id)
        if server is None:
            raise ResolutionConfigError(f"server ID '{server_id}' does not exist")
        return server

    def default(self) -> ServerDetails:
        for server in self._servers.values():
            if server.is_default:
                return server
        if len(self._servers) == 1:
            return next(iter(self._servers.values()))
        raise ResolutionConfigError("no default server is configured")

    def __len__(self) -> int:
        return len(self._servers)


class ResolverSection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo: str
    server_id: str = Field(default="", alias="serverId")


class ResolutionConfig(BaseModel):
    """Schema of ``.jfrog/projects/<type>.yaml``; only the resolver part is used."""

    version: int = 1
    type: str = ""
    resolver: ResolverSection

    @property
    def target_repo(self) -> str:
        return self.resolver.repo


def read_resolution_config(path: Path | str) -> ResolutionConfig:
    """Parse a resolution-only project config file."""
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ResolutionConfigError(f"cannot read {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ResolutionConfigError(f"{path} is not a YAML mapping")
    try:
        return ResolutionConfig.model_validate(raw)
    except ValidationError as e:
        raise ResolutionConfigError(f"invalid resolution config {path}: {e}") from e
