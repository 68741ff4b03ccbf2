"""Log stream multiplexer.

In-memory pub/sub that fans execution progress out to live observers in two
scopes:

- **execution scope** (keyed by ``execution_id``): everyone watching one run.
- **owner scope** (keyed by ``owner_id``): an activity feed across every
  execution an owner has.

Publishing is synchronous and never awaits, so events from one execution
reach each sink in the order they were published.  A sink that cannot
accept an event (closed, or its bounded buffer is full because the consumer
stalled) is evicted and closed on the spot; the publisher never sees the
error.  Persistence is someone else's job -- nothing here touches storage.
"""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from autocrew.agent_runtime.models.enums import ExecutionStatus
from autocrew.agent_runtime.models.events import StreamEvent


class Sink(Protocol):
    """Anything the multiplexer can write events to."""

    def send(self, event: StreamEvent) -> None:
        """Deliver *event* or raise.  Must not block."""
        ...

    def close(self) -> None:
        """End the stream.  Must be idempotent."""
        ...


class LogStreamMultiplexer:
    """Fan-out of stream events to execution and owner subscribers."""

    def __init__(self) -> None:
        self._by_execution: dict[str, set[Sink]] = {}
        self._by_owner: dict[str, set[Sink]] = {}

    # -- Subscription ----------------------------------------------------------

    def subscribe_execution(self, execution_id: str, sink: Sink) -> None:
        self._by_execution.setdefault(execution_id, set()).add(sink)
        logger.debug("Multiplexer: +sink execution={} (total={})", execution_id, len(self._by_execution[execution_id]))

    def subscribe_owner(self, owner_id: str, sink: Sink) -> None:
        self._by_owner.setdefault(owner_id, set()).add(sink)
        logger.debug("Multiplexer: +sink owner={} (total={})", owner_id, len(self._by_owner[owner_id]))

    def unsubscribe_execution(self, execution_id: str, sink: Sink) -> None:
        """Remove *sink*.  Safe to call repeatedly and from disconnect callbacks."""
        _discard(self._by_execution, execution_id, sink)

    def unsubscribe_owner(self, owner_id: str, sink: Sink) -> None:
        """Remove *sink*.  Safe to call repeatedly and from disconnect callbacks."""
        _discard(self._by_owner, owner_id, sink)

    # -- Publishing ------------------------------------------------------------

    def publish(self, execution_id: str, owner_id: str, event: StreamEvent) -> None:
        """Deliver *event* to execution subscribers, then to owner subscribers."""
        self._fan_out(self._by_execution, execution_id, event)
        self._fan_out(self._by_owner, owner_id, event)

    def publish_completion(self, execution_id: str, owner_id: str, status: ExecutionStatus) -> None:
        """Send the terminal event and close every execution-scope sink.

        The owner scope gets the same event but stays open: an owner feed
        outlives any single execution.
        """
        event = StreamEvent.completion(execution_id, status)
        self._fan_out(self._by_execution, execution_id, event)
        for sink in self._by_execution.pop(execution_id, set()):
            sink.close()
        self._fan_out(self._by_owner, owner_id, event)
        logger.debug("Multiplexer: completion execution={} status={}", execution_id, status)

    # -- Lifecycle -------------------------------------------------------------

    def close_all(self) -> int:
        """Close every sink in both scopes (shutdown).  Returns how many were closed."""
        closed = 0
        for registry in (self._by_execution, self._by_owner):
            for sinks in registry.values():
                for sink in sinks:
                    sink.close()
                    closed += 1
            registry.clear()
        if closed:
            logger.info("Multiplexer: closed {} subscriber streams", closed)
        return closed

    # -- Introspection ---------------------------------------------------------

    def subscriber_count(self, *, execution_id: str | None = None, owner_id: str | None = None) -> int:
        """Subscribers for one key, or across a whole scope when no key is given."""
        if execution_id is not None:
            return len(self._by_execution.get(execution_id, ()))
        if owner_id is not None:
            return len(self._by_owner.get(owner_id, ()))
        return sum(len(s) for s in self._by_execution.values()) + sum(len(s) for s in self._by_owner.values())

    @property
    def execution_subscribers(self) -> int:
        return sum(len(s) for s in self._by_execution.values())

    @property
    def owner_subscribers(self) -> int:
        return sum(len(s) for s in self._by_owner.values())

    # -- Internals -------------------------------------------------------------

    def _fan_out(self, registry: dict[str, set[Sink]], key: str, event: StreamEvent) -> None:
        sinks = registry.get(key)
        if not sinks:
            return
        dead: list[Sink] = []
        for sink in list(sinks):
            try:
                sink.send(event)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Multiplexer: evicting sink for {} ({!r})", key, exc)
                dead.append(sink)
        for sink in dead:
            _discard(registry, key, sink)
            sink.close()


def _discard(registry: dict[str, set[Sink]], key: str, sink: Sink) -> None:
    sinks = registry.get(key)
    if sinks is None:
        return
    sinks.discard(sink)
    if not sinks:
        del registry[key]
