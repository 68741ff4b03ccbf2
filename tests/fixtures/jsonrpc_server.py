"""Fake tool server for the tool bridge tests.

Speaks line-delimited JSON-RPC 2.0 on stdio, like a real MCP server.
Behaviour is selected by ``FAKE_SERVER_MODE``:

- ``normal``: answers the handshake and the tools below
- ``no_handshake``: never answers ``initialize``
- ``exit_on_start``: exits before reading anything

Tools (``tools/call``):

- ``echo``: returns ``arguments["text"]``
- ``env``: returns the value of the environment variable ``arguments["name"]``
- ``sleep``: waits ``arguments["seconds"]`` then returns ``"slept"``
- ``hang``: never answers
- ``crash``: exits the process without answering
- ``fail``: returns an ``isError`` result
- ``pid``: returns the server's process id

Each ``tools/call`` is answered from its own thread, so responses can arrive
out of order.
"""

import json
import os
import sys
import threading
import time

_write_lock = threading.Lock()

TOOLS = [
    {"name": "echo", "description": "Echo text back", "inputSchema": {"type": "object", "properties": {"text": {}}}},
    {"name": "env", "description": "Read an env var", "inputSchema": {"type": "object", "properties": {"name": {}}}},
    {"name": "sleep", "description": "Sleep", "inputSchema": {"type": "object", "properties": {"seconds": {}}}},
    {"name": "hang", "description": "Never answer"},
    {"name": "crash", "description": "Exit immediately"},
    {"name": "fail", "description": "Report an error"},
    {"name": "pid", "description": "Return the process id"},
]


def send(message):
    with _write_lock:
        sys.stdout.write(json.dumps(message) + "\n")
        sys.stdout.flush()


def text_result(request_id, text, is_error=False):
    send({"jsonrpc": "2.0", "id": request_id, "result": {"content": [{"type": "text", "text": text}], "isError": is_error}})


def call_tool(request_id, name, arguments):
    if name == "echo":
        text_result(request_id, str(arguments.get("text", "")))
    elif name == "env":
        text_result(request_id, os.environ.get(arguments.get("name", ""), ""))
    elif name == "sleep":
        time.sleep(float(arguments.get("seconds", 0)))
        text_result(request_id, "slept")
    elif name == "hang":
        return
    elif name == "crash":
        os._exit(3)
    elif name == "fail":
        text_result(request_id, "something broke", is_error=True)
    elif name == "pid":
        text_result(request_id, str(os.getpid()))
    else:
        send({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32602, "message": f"Unknown tool: {name}"}})


def main():
    mode = os.environ.get("FAKE_SERVER_MODE", "normal")
    if mode == "exit_on_start":
        sys.exit(1)

    print("fake server starting", file=sys.stderr, flush=True)
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        message = json.loads(line)
        method = message.get("method")
        request_id = message.get("id")
        if request_id is None:
            continue

        if method == "initialize":
            if mode == "no_handshake":
                continue
            send(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "result": {
                        "protocolVersion": message["params"]["protocolVersion"],
                        "capabilities": {"tools": {}},
                        "serverInfo": {"name": "fake-server", "version": "1.0"},
                    },
                }
            )
        elif method == "tools/list":
            send({"jsonrpc": "2.0", "id": request_id, "result": {"tools": TOOLS}})
        elif method == "tools/call":
            params = message.get("params") or {}
            threading.Thread(
                target=call_tool,
                args=(request_id, params.get("name"), params.get("arguments") or {}),
                daemon=True,
            ).start()
        else:
            send({"jsonrpc": "2.0", "id": request_id, "error": {"code": -32601, "message": "Method not found"}})


if __name__ == "__main__":
    main()
