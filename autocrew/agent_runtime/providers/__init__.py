"""Agent providers.

- **base**: provider protocol, request, and event types
- **echo**: deterministic provider for local development
- **pydantic_agent**: pydantic-ai ``Agent.iter`` provider with stored history
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from autocrew.agent_runtime.providers.base import AgentProvider
from autocrew.agent_runtime.providers.echo import EchoProvider

if TYPE_CHECKING:
    from autocrew.agent_runtime.settings import AutocrewSettings
    from autocrew.agent_runtime.store.base import StateStore


def create_provider(settings: AutocrewSettings, state_store: StateStore) -> AgentProvider:
    """Build the provider selected by ``AUTOCREW_PROVIDER``."""
    if settings.provider == "pydantic_ai":
        from autocrew.agent_runtime.providers.pydantic_agent import PydanticAIProvider

        return PydanticAIProvider(settings.provider_model, state_store)
    return EchoProvider()


__all__ = ["AgentProvider", "EchoProvider", "create_provider"]
