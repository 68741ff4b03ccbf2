"""One tool server subprocess speaking line-delimited JSON-RPC 2.0 on stdio.

Each request gets a fresh integer ``id`` and a future; a single reader task
owns stdout and resolves futures as responses arrive, in whatever order the
server sends them.  Concurrent callers are therefore never serialized on a
request/response round trip -- only the raw line write is locked.

When stdout reaches EOF (the server exited or crashed) every outstanding
request fails with ``ToolProcessExited`` and the owning pool is notified so
the next request spawns a fresh process.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from autocrew.agent_runtime.errors import ToolCallError, ToolProcessExited, ToolSpawnError
from autocrew.agent_runtime.tools.catalog import ToolServerSpec

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "autocrew", "version": "0.1.0"}

# Tool results (file contents, search hits) easily exceed asyncio's 64 KiB default.
_STREAM_LIMIT = 16 * 1024 * 1024


# ---------------------------------------------------------------------------
# Wire types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool advertised by ``tools/list``."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> ToolDescriptor:
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {"type": "object", "properties": {}},
        )


@dataclass
class ToolCallResult:
    """Flattened ``tools/call`` result."""

    content: str
    is_error: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, result: dict[str, Any]) -> ToolCallResult:
        parts: list[str] = []
        for item in result.get("content") or []:
            if isinstance(item, dict) and item.get("type") == "text":
                parts.append(str(item.get("text", "")))
            else:
                parts.append(json.dumps(item))
        return cls(content="\n".join(parts), is_error=bool(result.get("isError")), raw=result)


# ---------------------------------------------------------------------------
# Process
# ---------------------------------------------------------------------------


class ToolProcess:
    """A spawned tool server with id-correlated request/response."""

    def __init__(
        self,
        server_type: str,
        spec: ToolServerSpec,
        *,
        env: dict[str, str],
        request_timeout: float = 30.0,
        shutdown_timeout: float = 5.0,
        on_exit: Callable[[ToolProcess], None] | None = None,
    ) -> None:
        self.server_type = server_type
        self.spec = spec
        self._env = env
        self._request_timeout = request_timeout
        self._shutdown_timeout = shutdown_timeout
        self._on_exit = on_exit

        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._next_id = 0
        self._write_lock = asyncio.Lock()
        self._exited = False

        self.tools: list[ToolDescriptor] = []
        self.server_info: dict[str, Any] = {}

    # -- Properties ------------------------------------------------------------

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def alive(self) -> bool:
        return self._process is not None and not self._exited and self._process.returncode is None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the process and run the initialize / tools/list handshake."""
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.spec.command,
                *self.spec.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                limit=_STREAM_LIMIT,
            )
        except OSError as exc:
            msg = f"Failed to start tool server '{self.server_type}' ({self.spec.command}): {exc}"
            raise ToolSpawnError(msg) from exc

        logger.info("Started tool server %s (pid=%s)", self.server_type, self._process.pid)
        self._reader_task = asyncio.create_task(self._read_stdout(), name=f"tool-stdout-{self.server_type}")
        self._stderr_task = asyncio.create_task(self._drain_stderr(), name=f"tool-stderr-{self.server_type}")

        try:
            await self._handshake()
        except ToolCallError as exc:
            await self.shutdown()
            msg = f"Tool server '{self.server_type}' failed its handshake: {exc}"
            raise ToolSpawnError(msg) from exc

    async def _handshake(self) -> None:
        result = await self.request(
            "initialize",
            {"protocolVersion": MCP_PROTOCOL_VERSION, "capabilities": {}, "clientInfo": CLIENT_INFO},
        )
        self.server_info = result.get("serverInfo") or {}
        await self.notify("notifications/initialized")
        listing = await self.request("tools/list")
        self.tools = [ToolDescriptor.from_wire(t) for t in listing.get("tools") or []]
        logger.info(
            "Tool server %s ready: %d tools (%s)",
            self.server_type,
            len(self.tools),
            self.server_info.get("name", "unknown"),
        )

    async def shutdown(self) -> None:
        """Close stdin, terminate, and kill if the process outlives the timeout."""
        process = self._process
        if process is None:
            return

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._shutdown_timeout)
            except TimeoutError:
                logger.warning(
                    "Tool server %s (pid=%s) ignored SIGTERM for %ss, killing",
                    self.server_type,
                    process.pid,
                    self._shutdown_timeout,
                )
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        # Grandchildren may still hold the pipes open, so do not wait for EOF.
        tasks = [t for t in (self._reader_task, self._stderr_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._mark_exited()
        logger.info("Tool server %s stopped (returncode=%s)", self.server_type, process.returncode)

    # -- Requests --------------------------------------------------------------

    async def request(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict:
        """Send a request and wait for the response with the same ``id``.

        Raises ``ToolCallError`` on timeout or error response and
        ``ToolProcessExited`` if the process dies first.
        """
        if not self.alive:
            msg = f"Tool server '{self.server_type}' is not running"
            raise ToolProcessExited(msg)

        timeout = timeout if timeout is not None else self._request_timeout
        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._write({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}})
            response = await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            msg = f"{method} (id={request_id}) on '{self.server_type}' timed out after {timeout}s"
            raise ToolCallError(msg) from None
        finally:
            self._pending.pop(request_id, None)

        error = response.get("error")
        if error is not None:
            detail = error.get("message", error) if isinstance(error, dict) else error
            code = error.get("code") if isinstance(error, dict) else None
            msg = f"{method} on '{self.server_type}' failed: {detail} (code={code})"
            raise ToolCallError(msg)
        return response.get("result") or {}

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification (no ``id``, no response)."""
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._write(message)

    async def list_tools(self) -> list[ToolDescriptor]:
        listing = await self.request("tools/list")
        self.tools = [ToolDescriptor.from_wire(t) for t in listing.get("tools") or []]
        return self.tools

    async def call_tool(self, name: str, arguments: dict[str, Any], *, timeout: float | None = None) -> ToolCallResult:
        result = await self.request("tools/call", {"name": name, "arguments": arguments}, timeout=timeout)
        return ToolCallResult.from_wire(result)

    # -- Internals -------------------------------------------------------------

    async def _write(self, message: dict[str, Any]) -> None:
        assert self._process is not None and self._process.stdin is not None  # noqa: S101
        line = (json.dumps(message, separators=(",", ":")) + "\n").encode()
        async with self._write_lock:
            try:
                self._process.stdin.write(line)
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                self._mark_exited()
                msg = f"Tool server '{self.server_type}' closed its stdin"
                raise ToolProcessExited(msg) from exc

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None  # noqa: S101
        stdout = self._process.stdout
        try:
            while True:
                try:
                    line = await stdout.readline()
                except ValueError:
                    logger.exception("Tool server %s wrote an oversized line, giving up on it", self.server_type)
                    break
                if not line:
                    break
                self._handle_line(line)
        finally:
            self._mark_exited()

    def _handle_line(self, line: bytes) -> None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON output from %s: %.200r", self.server_type, line)
            return
        if not isinstance(message, dict):
            logger.warning("Ignoring non-object message from %s", self.server_type)
            return

        msg_id = message.get("id")
        if msg_id is None or ("result" not in message and "error" not in message):
            logger.debug("Notification from %s: %s", self.server_type, message.get("method"))
            return

        future = self._pending.get(msg_id)
        if future is None or future.done():
            logger.debug("Dropping response for unknown or expired id %s from %s", msg_id, self.server_type)
            return
        future.set_result(message)

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None  # noqa: S101
        stderr = self._process.stderr
        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                continue
            if not line:
                return
            logger.debug("[%s stderr] %s", self.server_type, line.decode(errors="replace").rstrip())

    def _mark_exited(self) -> None:
        if self._exited:
            return
        self._exited = True
        returncode = self._process.returncode if self._process is not None else None
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                msg = f"Tool server '{self.server_type}' exited (returncode={returncode})"
                future.set_exception(ToolProcessExited(msg))
        if pending:
            logger.warning("Tool server %s exited with %d requests outstanding", self.server_type, len(pending))
        if self._on_exit is not None:
            self._on_exit(self)
