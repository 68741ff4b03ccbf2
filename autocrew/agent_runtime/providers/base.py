"""Agent provider interface.

The provider is a black box that takes a prompt, a set of tools and an
optional session token, and streams progress events until it yields exactly
one ``RunResult``.  The execution coordinator turns every event into a log
entry; it never looks inside the provider.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass
class ToolBinding:
    """A callable tool handed to the provider.

    ``invoke`` returns the text the model should see.  Failures are reported
    as text too, so a broken tool degrades the run instead of aborting it.
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    invoke: Callable[[dict[str, Any]], Awaitable[str]]


@dataclass
class ProviderRequest:
    execution_id: str
    unit_id: str
    system_prompt: str
    prompt: str
    tools: Sequence[ToolBinding] = ()
    session_token: str | None = None
    max_turns: int = 25


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass
class SessionStarted:
    session_token: str | None
    model: str | None = None


@dataclass
class AssistantText:
    text: str


@dataclass
class ToolInvocation:
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    turn: int = 0


@dataclass
class RunResult:
    """Terminal event.  ``cost`` is ``None`` when the provider does not report one."""

    output: str | None = None
    cost: float | None = None
    duration_ms: int | None = None
    num_turns: int = 0
    session_token: str | None = None
    is_error: bool = False
    error: str | None = None


ProviderEvent = SessionStarted | AssistantText | ToolInvocation | RunResult


@runtime_checkable
class AgentProvider(Protocol):
    name: str

    def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        """Run the agent, yielding events and finishing with one ``RunResult``."""
        ...
