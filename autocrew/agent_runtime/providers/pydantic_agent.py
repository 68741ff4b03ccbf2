"""pydantic-ai backed provider.

Runs the agent graph with ``Agent.iter`` and translates graph nodes into
provider events.  Conversation continuity is kept on our side: the full
message history of each run is written to the state store under a fresh
session token, and the next run of the same unit resumes from it.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from pydantic_ai import Agent, Tool
from pydantic_ai.messages import ModelMessage, ModelMessagesTypeAdapter, TextPart, ToolCallPart
from pydantic_ai.models import Model
from pydantic_ai.usage import UsageLimits

from autocrew.agent_runtime.models.session import SessionState
from autocrew.agent_runtime.providers.base import (
    AssistantText,
    ProviderEvent,
    ProviderRequest,
    RunResult,
    SessionStarted,
    ToolBinding,
    ToolInvocation,
)

if TYPE_CHECKING:
    from autocrew.agent_runtime.store.base import StateStore

logger = logging.getLogger(__name__)


def _to_tool(binding: ToolBinding) -> Tool:
    async def _invoke(**kwargs: Any) -> str:
        return await binding.invoke(kwargs)

    return Tool.from_schema(
        _invoke,
        name=binding.name,
        description=binding.description,
        json_schema=binding.input_schema,
    )


class PydanticAIProvider:
    name = "pydantic_ai"

    def __init__(self, model: Model | str, state_store: StateStore) -> None:
        self._model = model
        self._model_name = model if isinstance(model, str) else model.model_name
        self._state_store = state_store

    async def _load_history(self, session_token: str | None) -> list[ModelMessage] | None:
        if not session_token:
            return None
        try:
            state = await self._state_store.read_state(session_token)
        except FileNotFoundError:
            logger.warning("Session %s has no stored history; starting fresh", session_token)
            return None
        return ModelMessagesTypeAdapter.validate_python(state.message_history)

    async def stream(self, request: ProviderRequest) -> AsyncIterator[ProviderEvent]:
        started = time.monotonic()
        history = await self._load_history(request.session_token)
        agent = Agent(
            self._model,
            system_prompt=request.system_prompt,
            tools=[_to_tool(b) for b in request.tools],
        )

        new_token = uuid.uuid4().hex
        yield SessionStarted(session_token=new_token, model=self._model_name)

        turns = 0
        async with agent.iter(
            request.prompt,
            message_history=history,
            usage_limits=UsageLimits(request_limit=request.max_turns),
        ) as run:
            async for node in run:
                if not Agent.is_call_tools_node(node):
                    continue
                turns += 1
                for part in node.model_response.parts:
                    if isinstance(part, TextPart) and part.content.strip():
                        yield AssistantText(text=part.content)
                    elif isinstance(part, ToolCallPart):
                        yield ToolInvocation(tool_name=part.tool_name, arguments=part.args_as_dict(), turn=turns)
            result = run.result

        if result is None:
            yield RunResult(
                is_error=True,
                error="Agent run ended without a result",
                num_turns=turns,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            return

        messages = result.all_messages()
        await self._state_store.write_state(
            new_token,
            SessionState(
                message_history=ModelMessagesTypeAdapter.dump_python(messages, mode="json"),
                model=self._model_name,
            ),
        )

        output = result.output
        yield RunResult(
            output=output if isinstance(output, str) else str(output),
            # pydantic-ai reports token usage, not money; leave cost unknown.
            cost=None,
            duration_ms=int((time.monotonic() - started) * 1000),
            num_turns=turns,
            session_token=new_token,
        )
