"""Tests unitaires: transport SSE (httpx.MockTransport, aucun réseau).

Objectifs:
    - Endpoint de POST découvert via l'événement `endpoint`
    - Le flux long survit à l'expiration d'un appel (start() ou requête)
    - Réponses aux requêtes initiées par le serveur (ping → {}, autre → -32601)
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from mcp_probe.core import ProtocolTimeoutError, TransportError
from mcp_probe.transport import SseTransport
from mcp_probe.transport.jsonrpc import make_request


class FakeSseServer:
    """Serveur SSE en mémoire: GET → flux, POST → 202 + réponse poussée sur le flux."""

    def __init__(self, endpoint: str = "/messages?sessionId=abc"):
        self.endpoint = endpoint
        self.queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()
        self.endpoint_gate = asyncio.Event()
        self.endpoint_gate.set()
        self.posts: List[Dict[str, Any]] = []
        self.get_count = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            self.get_count += 1
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self._stream())
        message = json.loads(request.content)
        self.posts.append(message)
        reply = self.respond(message)
        if reply is not None:
            await self.queue.put(reply)
        return httpx.Response(202)

    def respond(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        method = message.get("method")
        if "id" not in message or method is None or method == "slow":
            return None
        if method == "tools/list":
            return {"jsonrpc": "2.0", "id": message["id"], "result": {"tools": [{"name": "echo"}]}}
        return {"jsonrpc": "2.0", "id": message["id"], "result": {}}

    async def _stream(self):
        await self.endpoint_gate.wait()
        yield f"event: endpoint\ndata: {self.endpoint}\n\n".encode()
        while True:
            message = await self.queue.get()
            if message is None:
                return
            yield f"event: message\ndata: {json.dumps(message)}\n\n".encode()


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition non atteinte")
        await asyncio.sleep(0.01)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_endpoint_discovery_and_request_roundtrip():
    server = FakeSseServer()
    transport = SseTransport("http://test/sse", http_transport=httpx.MockTransport(server.handler))
    try:
        await transport.start()
        assert transport.endpoint == "http://test/messages?sessionId=abc"
        assert transport.session_id == "abc"

        response = await transport.send_request(make_request("tools/list", None, 1), timeout=2.0)
        assert response["result"]["tools"][0]["name"] == "echo"
        assert server.posts[0]["method"] == "tools/list"
    finally:
        await transport.close()
    assert not transport.stream_open


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_survives_request_timeout():
    server = FakeSseServer()
    transport = SseTransport("http://test/sse", http_transport=httpx.MockTransport(server.handler))
    try:
        await transport.start()
        with pytest.raises(ProtocolTimeoutError):
            await transport.send_request(make_request("slow", None, 1), timeout=0.2)

        assert transport.stream_open
        response = await transport.send_request(make_request("ping", None, 2), timeout=2.0)
        assert response["result"] == {}
        assert server.get_count == 1
        assert transport.pending_count == 0
    finally:
        await transport.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stream_survives_cancelled_start():
    server = FakeSseServer()
    server.endpoint_gate.clear()
    transport = SseTransport("http://test/sse", http_transport=httpx.MockTransport(server.handler))
    try:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(transport.start(), 0.2)
        assert transport.stream_open

        server.endpoint_gate.set()
        await asyncio.wait_for(transport.start(), 2.0)
        assert transport.endpoint is not None
        assert server.get_count == 1
    finally:
        await transport.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_requests_are_answered():
    server = FakeSseServer()
    transport = SseTransport("http://test/sse", http_transport=httpx.MockTransport(server.handler))
    try:
        await transport.start()
        await server.queue.put({"jsonrpc": "2.0", "id": "srv-1", "method": "ping"})
        await server.queue.put({"jsonrpc": "2.0", "id": "srv-2", "method": "roots/list"})
        await _wait_for(lambda: len(server.posts) == 2)

        replies = {post["id"]: post for post in server.posts}
        assert replies["srv-1"]["result"] == {}
        assert replies["srv-2"]["error"]["code"] == -32601
    finally:
        await transport.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notifications_are_delivered():
    server = FakeSseServer()
    transport = SseTransport("http://test/sse", http_transport=httpx.MockTransport(server.handler))
    received = []
    transport.set_notification_handler(received.append)
    try:
        await transport.start()
        await server.queue.put({"jsonrpc": "2.0", "method": "notifications/tools/list_changed"})
        await _wait_for(lambda: received)
        assert received[0]["method"] == "notifications/tools/list_changed"
    finally:
        await transport.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_refused_stream_fails_start():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="unauthorized")

    transport = SseTransport("http://test/sse", http_transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(TransportError) as exc:
            await transport.start()
        assert exc.value.details["status_code"] == 401
    finally:
        await transport.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cross_origin_endpoint_is_ignored():
    server = FakeSseServer(endpoint="http://evil.example/messages")
    transport = SseTransport("http://test/sse", http_transport=httpx.MockTransport(server.handler))
    try:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(transport.start(), 0.3)
        assert transport.endpoint is None
    finally:
        await transport.close()
