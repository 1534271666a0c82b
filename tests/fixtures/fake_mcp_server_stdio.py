#!/usr/bin/env python3
"""Fake MCP stdio server for client verification.

Purpose:
- Provide a deterministic stdio JSON-RPC server to test the client without
  depending on npx/network.

Behavior:
- Reads JSON-RPC messages from stdin (one per line)
- Replies with JSON-RPC 2.0 responses on stdout (one per line)

Supported methods:
- initialize / notifications/initialized / ping
- tools/list, tools/call:
    - echo: returns its arguments as JSON text
    - echo_big: returns a large string payload of requested size
    - notify: emits a notifications/message before answering
    - ping_client: sends a `ping` request to the client, answers with its reply
    - sample_client: sends an unsupported request to the client, answers with its reply
- resources/list, resources/read
- prompts/list, prompts/get

Flags:
- --banner: writes a non JSON-RPC line on stdout (and one on stderr) first
- --hang: reads messages but never answers
"""

from __future__ import annotations

import json
import sys
from typing import Any

SERVER_NAME = "fake-mcp"


def _write(obj: object) -> None:
    sys.stdout.write(json.dumps(obj, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _result(req_id: object | None, result: dict[str, Any]) -> dict[str, object]:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def _error(*, req_id: object | None, code: int, message: str) -> dict[str, object]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": int(code), "message": message}}


def _text(text: str) -> dict[str, object]:
    return {"content": [{"type": "text", "text": text}]}


TOOLS = [
    {
        "name": "echo",
        "description": "Retourne ses arguments",
        "inputSchema": {
            "type": "object",
            "properties": {
                "message": {"type": "string"},
                "paths": {"type": "array", "items": {"type": "string"}},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["paths"],
        },
    },
    {
        "name": "echo_big",
        "description": "Retourne une grande réponse (1 ligne)",
        "inputSchema": {
            "type": "object",
            "properties": {"size": {"type": "integer"}},
            "required": ["size"],
        },
    },
    {"name": "notify", "description": "Émet une notification", "inputSchema": {"type": "object"}},
    {"name": "ping_client", "description": "Ping du client", "inputSchema": {"type": "object"}},
    {"name": "sample_client", "description": "Requête non supportée", "inputSchema": {"type": "object"}},
]


def _ask_client(request: dict[str, object]) -> object:
    """Envoie une requête au client et lit sa réponse (ligne suivante sur stdin)."""
    _write(request)
    raw = sys.stdin.buffer.readline()
    return json.loads(raw.decode("utf-8"))


def _tools_call(req_id: object | None, params: dict[str, Any]) -> dict[str, object]:
    name = params.get("name")
    arguments = params.get("arguments")
    if not isinstance(arguments, dict):
        arguments = {}
    if name == "echo":
        return _result(req_id, _text(json.dumps(arguments, sort_keys=True)))
    if name == "echo_big":
        if not isinstance(arguments.get("size"), int):
            return _error(req_id=req_id, code=-32602, message="Invalid params")
        return _result(req_id, _text("x" * max(0, int(arguments["size"]))))
    if name == "notify":
        _write({"jsonrpc": "2.0", "method": "notifications/message", "params": {"level": "info", "data": "hello"}})
        return _result(req_id, _text("notified"))
    if name == "ping_client":
        reply = _ask_client({"jsonrpc": "2.0", "id": "srv-ping", "method": "ping"})
        return _result(req_id, _text(json.dumps(reply, sort_keys=True)))
    if name == "sample_client":
        reply = _ask_client({"jsonrpc": "2.0", "id": "srv-sample", "method": "sampling/createMessage", "params": {}})
        return _result(req_id, _text(json.dumps(reply, sort_keys=True)))
    return _error(req_id=req_id, code=-32601, message="Method not found")


def _handle(req: dict[str, Any]) -> dict[str, object] | None:
    req_id = req.get("id")
    method = req.get("method")
    params = req.get("params")
    if "id" not in req:
        # Notifications (notifications/initialized, ...): pas de réponse
        return None
    if method == "initialize":
        return _result(
            req_id,
            {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}, "resources": {}, "prompts": {}},
                "serverInfo": {"name": SERVER_NAME, "version": "0.1.0"},
            },
        )
    if method == "ping":
        return _result(req_id, {})
    if method == "tools/list":
        return _result(req_id, {"tools": TOOLS})
    if method == "tools/call":
        if not isinstance(params, dict):
            return _error(req_id=req_id, code=-32602, message="Invalid params")
        return _tools_call(req_id, params)
    if method == "resources/list":
        cursor = (params or {}).get("cursor")
        if cursor is None:
            return _result(
                req_id,
                {"resources": [{"uri": "memo://one", "name": "one", "mimeType": "text/plain"}], "nextCursor": "page-2"},
            )
        return _result(req_id, {"resources": [{"uri": "memo://two", "name": "two", "mimeType": "text/plain"}]})
    if method == "resources/read":
        uri = (params or {}).get("uri")
        return _result(req_id, {"contents": [{"uri": uri, "mimeType": "text/plain", "text": f"contenu de {uri}"}]})
    if method == "prompts/list":
        return _result(
            req_id,
            {
                "prompts": [
                    {
                        "name": "greet",
                        "description": "Salutation",
                        "arguments": [{"name": "who", "required": True}],
                    }
                ]
            },
        )
    if method == "prompts/get":
        who = ((params or {}).get("arguments") or {}).get("who", "?")
        return _result(
            req_id,
            {
                "description": "Salutation",
                "messages": [{"role": "user", "content": {"type": "text", "text": f"Bonjour {who}"}}],
            },
        )
    return _error(req_id=req_id, code=-32601, message="Method not found")


def main(argv: list[str]) -> int:
    hang = "--hang" in argv
    if "--banner" in argv:
        sys.stdout.write("fake MCP server booting (not JSON)\n")
        sys.stdout.flush()
        sys.stderr.write("fake MCP server: stderr banner\n")
        sys.stderr.flush()

    while True:
        raw = sys.stdin.buffer.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        try:
            req = json.loads(line)
        except json.JSONDecodeError:
            _write(_error(req_id=None, code=-32700, message="Parse error"))
            continue
        if not isinstance(req, dict):
            _write(_error(req_id=None, code=-32600, message="Invalid Request"))
            continue
        if hang:
            continue
        reply = _handle(req)
        if reply is not None:
            _write(reply)

    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
