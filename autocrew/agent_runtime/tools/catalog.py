"""Tool server catalog.

Maps a tool server *type* (the name a unit of work declares in
``tool_servers``) to the command that launches it.  Credentials never appear
here: ``credential_env`` only names which environment variable receives
which field of the owner's stored credentials.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ToolServerSpec(BaseModel):
    """How to launch one type of tool server."""

    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict, description="Static, non-secret environment")
    credential_env: dict[str, str] = Field(
        default_factory=dict,
        description="ENV_VAR -> credential field, e.g. {'GITHUB_TOKEN': 'access_token'}",
    )

    @property
    def requires_credentials(self) -> bool:
        return bool(self.credential_env)


class ToolServerCatalog:
    """Read-only lookup of server specs by type."""

    def __init__(self, servers: dict[str, ToolServerSpec] | None = None) -> None:
        self._servers = dict(servers or {})

    def get(self, server_type: str) -> ToolServerSpec | None:
        return self._servers.get(server_type)

    def __contains__(self, server_type: object) -> bool:
        return server_type in self._servers

    @property
    def server_types(self) -> list[str]:
        return sorted(self._servers)
