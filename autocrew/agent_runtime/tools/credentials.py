"""Credential store interface.

Token acquisition and encryption at rest belong to an external service; the
bridge only needs the decrypted values at spawn time.  Values returned here
are passed to the tool process through its environment and must never be
logged or placed on a command line.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CredentialStore(Protocol):
    async def get_credentials(self, owner_id: str, server_type: str) -> dict[str, str] | None:
        """Decrypted credential fields, or ``None`` if the owner has none."""
        ...


class InMemoryCredentialStore:
    """Process-local credentials, keyed by ``(owner_id, server_type)``."""

    def __init__(self) -> None:
        self._credentials: dict[tuple[str, str], dict[str, str]] = {}

    def set(self, owner_id: str, server_type: str, credentials: dict[str, str]) -> None:
        self._credentials[owner_id, server_type] = dict(credentials)

    def remove(self, owner_id: str, server_type: str) -> None:
        self._credentials.pop((owner_id, server_type), None)

    async def get_credentials(self, owner_id: str, server_type: str) -> dict[str, str] | None:
        credentials = self._credentials.get((owner_id, server_type))
        return dict(credentials) if credentials is not None else None
