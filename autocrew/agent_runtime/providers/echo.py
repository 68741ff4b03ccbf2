"""Deterministic local provider.

Echoes the prompt back without calling any model, so the whole dispatch path
(scheduling, streaming, persistence) can be exercised without API keys.
When the unit declares tools, the first advertised tool is invoked once with
empty arguments to exercise the tool bridge as well.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator

from autocrew.agent_runtime.providers.base import (
    AssistantText,
    ProviderEvent,
    ProviderRequest,
    RunResult,
    SessionStarted,
    ToolInvocation,
)


class EchoProvider:
    name = "echo"

    def __init__(self, *, call_tools: bool = True) -> None:
        self._call_tools = call_tools

    async def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        started = time.monotonic()
        token = request.session_token or uuid.uuid4().hex
        yield SessionStarted(session_token=token, model="echo")

        text = request.prompt.strip() or "(empty prompt)"
        yield AssistantText(text=text)

        turns = 1
        if self._call_tools and request.tools and request.max_turns > 1:
            tool = request.tools[0]
            turns += 1
            yield ToolInvocation(tool_name=tool.name, arguments={}, turn=turns)
            observation = await tool.invoke({})
            yield AssistantText(text=f"{tool.name} returned: {observation}")

        yield RunResult(
            output=text,
            cost=None,
            duration_ms=int((time.monotonic() - started) * 1000),
            num_turns=turns,
            session_token=token,
        )
