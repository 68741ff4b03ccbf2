"""Local filesystem state store.

Stores provider session state as JSON files under the data root::

    {data_root}/sessions/{session_token}/state.json

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.

Writes are atomic: data is written to a temporary file in the same directory,
then renamed to the target path, so a crash mid-write never leaves a
half-written history behind for the next run to resume from.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from functools import partial
from pathlib import Path

from anyio import to_thread

from autocrew.agent_runtime.models.session import SessionState


class LocalStateStore:
    """Local filesystem implementation of the StateStore protocol."""

    def __init__(self, data_root: str | Path) -> None:
        self._base = Path(data_root) / "sessions"

    def _state_path(self, session_token: str) -> Path:
        if not session_token or "/" in session_token or session_token.startswith("."):
            msg = f"Invalid session token: {session_token!r}"
            raise ValueError(msg)
        return self._base / session_token / "state.json"

    # -- Write -----------------------------------------------------------------

    async def write_state(self, session_token: str, state: SessionState) -> None:
        data = state.model_dump_json()
        await to_thread.run_sync(partial(_atomic_write, self._state_path(session_token), data))

    # -- Read ------------------------------------------------------------------

    async def read_state(self, session_token: str) -> SessionState:
        raw = await to_thread.run_sync(partial(_read_file, self._state_path(session_token)))
        return SessionState.model_validate_json(raw)

    # -- Utilities -------------------------------------------------------------

    async def exists(self, session_token: str) -> bool:
        return await to_thread.run_sync(self._state_path(session_token).exists)

    async def delete(self, session_token: str) -> None:
        session_dir = self._state_path(session_token).parent
        await to_thread.run_sync(partial(_rmtree, session_dir))


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _rmtree(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
