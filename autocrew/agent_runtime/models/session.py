"""Provider session state.

The session token stored on a unit of work is opaque to the dispatch core.
For providers that keep history on our side (pydantic-ai), the token names
a state blob in the state store.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SessionState(BaseModel):
    """Full session state blob written to the state store."""

    message_history: list = Field(default_factory=list, description="pydantic-ai ModelMessage list")
    model: str | None = None
