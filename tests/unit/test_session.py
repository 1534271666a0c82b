"""Tests unitaires: session MCP (handshake, pagination, arguments d'outils)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from mcp_probe.core import ProtocolError, TransportKind
from mcp_probe.transport import McpSession, Transport, prepare_tool_arguments

SCHEMA = {
    "type": "object",
    "properties": {
        "paths": {"type": "array"},
        "tags": {"type": "array"},
        "query": {"type": "string"},
    },
    "required": ["paths", "query"],
}


@pytest.mark.unit
def test_empty_required_array_is_sent_as_empty_list():
    assert prepare_tool_arguments(SCHEMA, {"paths": [], "query": "x"}) == {"paths": [], "query": "x"}


@pytest.mark.unit
def test_empty_optional_array_is_omitted():
    assert prepare_tool_arguments(SCHEMA, {"tags": [], "query": "x"}) == {"query": "x"}


@pytest.mark.unit
def test_none_or_blank_for_array_property_counts_as_empty():
    assert prepare_tool_arguments(SCHEMA, {"paths": None, "tags": ""}) == {"paths": []}


@pytest.mark.unit
def test_non_empty_and_unknown_arguments_pass_through():
    prepared = prepare_tool_arguments(SCHEMA, {"tags": ["a"], "extra": 3})
    assert prepared == {"tags": ["a"], "extra": 3}
    assert prepare_tool_arguments({}, None) == {}


class ScriptedTransport(Transport):
    """Répond à partir d'une table méthode → liste de résultats."""

    kind = TransportKind.HTTP

    def __init__(self, script: Dict[str, List[Dict[str, Any]]]):
        self.script = script
        self.requests: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []

    async def start(self) -> None:
        return None

    async def send_request(self, message, timeout: Optional[float] = None):
        self.requests.append(message)
        reply = self.script[message["method"]].pop(0)
        return {"jsonrpc": "2.0", "id": message["id"], **reply}

    async def send_notification(self, message) -> None:
        self.notifications.append(message)

    def set_notification_handler(self, handler) -> None:
        return None

    async def close(self) -> None:
        return None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_initialize_sends_initialized_notification():
    transport = ScriptedTransport(
        {
            "initialize": [
                {"result": {"protocolVersion": "2024-11-05", "serverInfo": {"name": "srv", "version": "2"}}}
            ]
        }
    )
    session = McpSession(transport)
    info = await session.initialize(timeout=1.0)

    assert info.name == "srv"
    assert info.protocol_version == "2024-11-05"
    params = transport.requests[0]["params"]
    assert params["clientInfo"]["name"] == "mcp-probe"
    assert [n["method"] for n in transport.notifications] == ["notifications/initialized"]
    assert session.server_info is info


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_resources_follows_cursor():
    transport = ScriptedTransport(
        {
            "resources/list": [
                {"result": {"resources": [{"uri": "a://1"}], "nextCursor": "p2"}},
                {"result": {"resources": [{"uri": "a://2"}]}},
            ]
        }
    )
    resources = await McpSession(transport).list_resources()
    assert [r.uri for r in resources] == ["a://1", "a://2"]
    assert transport.requests[1]["params"] == {"cursor": "p2"}
    assert len({r["id"] for r in transport.requests}) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rpc_error_becomes_protocol_error():
    transport = ScriptedTransport({"tools/call": [{"error": {"code": -32602, "message": "Invalid params"}}]})
    with pytest.raises(ProtocolError) as exc:
        await McpSession(transport).call_tool("echo", {})
    assert exc.value.rpc_code == -32602
    assert exc.value.method == "tools/call"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_call_tool_uses_cached_schema():
    tool = {"name": "echo", "inputSchema": SCHEMA}
    transport = ScriptedTransport(
        {
            "tools/list": [{"result": {"tools": [tool]}}],
            "tools/call": [{"result": {"content": [{"type": "text", "text": "ok"}]}}],
        }
    )
    session = McpSession(transport)
    await session.list_tools()
    result = await session.call_tool("echo", {"paths": [], "tags": [], "query": "q"})

    assert result.text == "ok"
    assert transport.requests[-1]["params"]["arguments"] == {"paths": [], "query": "q"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_call_tool_without_listed_schema_keeps_empty_arrays():
    transport = ScriptedTransport({"tools/call": [{"result": {"content": []}}]})
    session = McpSession(transport)

    await session.call_tool("write_files", {"paths": [], "mode": "w"})

    assert [r["method"] for r in transport.requests] == ["tools/call"]
    assert transport.requests[0]["params"]["arguments"] == {"paths": [], "mode": "w"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_prompt_stringifies_arguments():
    transport = ScriptedTransport({"prompts/get": [{"result": {"messages": []}}]})
    await McpSession(transport).get_prompt("p", {"n": 3, "who": "moi"})
    assert transport.requests[0]["params"]["arguments"] == {"n": "3", "who": "moi"}
