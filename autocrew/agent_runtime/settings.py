"""Service configuration loaded from AUTOCREW_* environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from autocrew.agent_runtime.tools.catalog import ToolServerSpec


class AutocrewSettings(BaseSettings):
    """Autocrew Agent Runtime settings.

    All fields are read from environment variables with the ``AUTOCREW_``
    prefix.  For example, ``AUTOCREW_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    Complex fields (``tool_servers``) are parsed as JSON.

    LLM provider keys (OPENAI_API_KEY, ANTHROPIC_API_KEY, ...) are **not**
    managed here -- they are read directly by pydantic-ai via its own model
    conventions.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOCREW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Infrastructure --------------------------------------------------------
    database_url: str | None = None
    """PostgreSQL connection string (psycopg3).

    When unset the runtime falls back to the in-process store, which is
    enough for local development but loses everything on restart.
    """

    # -- Data storage ----------------------------------------------------------
    data_root: str = "./data"
    """Root directory for provider session state (message history blobs)."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    graceful_shutdown_timeout: int = 600
    """Seconds to wait for in-flight executions to finish during shutdown."""

    # -- Tick loops ------------------------------------------------------------
    enable_scheduler: bool = True
    enable_dispatcher: bool = True
    scheduler_interval: float = 60.0
    dispatcher_interval: float = 30.0
    tick_jitter: float = 5.0
    """Random delay (seconds) added to every tick to avoid thundering herds."""

    # -- Execution -------------------------------------------------------------
    provider: Literal["echo", "pydantic_ai"] = "echo"
    provider_model: str = "openai:gpt-4o"
    default_max_turns: int = 25
    execution_timeout: float | None = None
    """Upper bound (seconds) for a single execution.  ``None`` disables it."""

    # -- Streaming -------------------------------------------------------------
    subscriber_queue_size: int = 256
    """Per-subscriber buffer.  A subscriber that falls further behind is evicted."""

    log_queue_size: int = 1000
    """Per-execution persistence buffer for log entries."""

    # -- Tool servers ----------------------------------------------------------
    tool_servers: dict[str, ToolServerSpec] = Field(default_factory=dict)
    """Catalog of tool server types, e.g.::

        AUTOCREW_TOOL_SERVERS='{"github": {"command": "npx",
            "args": ["-y", "@modelcontextprotocol/server-github"],
            "credential_env": {"GITHUB_PERSONAL_ACCESS_TOKEN": "access_token"}}}'
    """

    tool_call_timeout: float = 30.0
    tool_shutdown_timeout: float = 5.0


def get_settings() -> AutocrewSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> AutocrewSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return AutocrewSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
