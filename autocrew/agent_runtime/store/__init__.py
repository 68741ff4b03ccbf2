"""Store implementations for the dispatch index and provider session state."""

from autocrew.agent_runtime.store.base import DispatchStore, StateStore
from autocrew.agent_runtime.store.local import LocalStateStore
from autocrew.agent_runtime.store.memory import MemoryDispatchStore
from autocrew.agent_runtime.store.sql import SqlDispatchStore

__all__ = ["DispatchStore", "LocalStateStore", "MemoryDispatchStore", "SqlDispatchStore", "StateStore"]
