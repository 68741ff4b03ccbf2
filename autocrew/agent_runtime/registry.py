"""In-process actor registry.

The single authoritative busy set: an actor (unit of work) appears here from
the moment an execution is admitted until that execution settles.  The time
scheduler, the task dispatcher and manual triggers all go through it, so a
unit can never run twice concurrently no matter which path triggered it.

Ephemeral -- empty on process restart.  Stale ``running`` rows left behind
by a crash are reconciled by startup recovery, not by this registry.
"""

from __future__ import annotations

import asyncio

from loguru import logger

from autocrew.agent_runtime.errors import ShuttingDownError


class ActorRegistry:
    """Busy set of actors with a drain mechanism for graceful shutdown.

    ``try_acquire`` never awaits, so check-and-insert is atomic with respect
    to the event loop: of N concurrent triggers for the same actor exactly one
    wins.  ``wait_until_drained`` blocks until every claim has been released.
    """

    def __init__(self) -> None:
        self._busy: dict[str, str] = {}
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Starts "drained" (no claims).
        self._shutting_down = False

    # -- Mutation --------------------------------------------------------------

    def try_acquire(self, actor_id: str, holder: str = "") -> bool:
        """Claim *actor_id*.  Returns ``False`` if it is already busy.

        Raises ``ShuttingDownError`` once shutdown has begun.
        """
        if self._shutting_down:
            raise ShuttingDownError
        if actor_id in self._busy:
            return False
        self._busy[actor_id] = holder
        self._drain_event.clear()
        logger.debug("Registry: acquired actor {} ({})", actor_id, holder or "-")
        return True

    def release(self, actor_id: str) -> None:
        """Release a claim.  Releasing an idle actor is a no-op."""
        if self._busy.pop(actor_id, None) is not None:
            logger.debug("Registry: released actor {}", actor_id)
        if not self._busy:
            self._drain_event.set()

    # -- Query -----------------------------------------------------------------

    def is_busy(self, actor_id: str) -> bool:
        return actor_id in self._busy

    def holder(self, actor_id: str) -> str | None:
        """Return what holds the claim (usually an execution ID)."""
        return self._busy.get(actor_id)

    def active_ids(self) -> list[str]:
        """Return a snapshot of busy actor IDs."""
        return list(self._busy)

    @property
    def active_count(self) -> int:
        return len(self._busy)

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New claims are refused."""
        self._shutting_down = True
        logger.info("Registry: shutdown initiated, refusing new executions")
        if not self._busy:
            self._drain_event.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until every claim has been released.

        Returns ``True`` if the registry is empty, ``False`` if *timeout*
        expired with actors still busy.
        """
        if not self._busy:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Registry: drain timed out after {}s with {} actors still busy",
                timeout,
                len(self._busy),
            )
            return False
        else:
            return True
