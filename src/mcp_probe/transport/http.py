"""mcp_probe.transport.http

Transport HTTP requête/réponse ("streamable http").

Chaque message est un POST borné dans le temps. La réponse est soit un corps
JSON, soit un corps `text/event-stream` dont on extrait la réponse attendue
(et les éventuelles notifications intercalées). L'en-tête `Mcp-Session-Id`
renvoyé par le serveur est rejoué sur les POST suivants.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Mapping, Optional

import httpx

from ..core.constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_HTTP_CONNECT_TIMEOUT, MCP_PROTOCOL_VERSION
from ..core.exceptions import ProtocolError, TransportError
from ..core.models import TransportKind
from . import jsonrpc
from .base import JsonRpcTransport
from .event_stream import aiter_events
from .jsonrpc import JsonRpcMessage

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


class HttpTransport(JsonRpcTransport):
    kind = TransportKind.HTTP

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
        connect_timeout: float = DEFAULT_HTTP_CONNECT_TIMEOUT,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self._url = url
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._connect_timeout = min(connect_timeout, timeout)
        self._http_transport = http_transport
        self._client: Optional[httpx.AsyncClient] = None
        self._session_id: Optional[str] = None

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    async def start(self) -> None:
        self._ensure_open()
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._http_transport,
                timeout=httpx.Timeout(self._timeout, connect=self._connect_timeout),
                headers=self._headers,
            )
            logger.debug(f"📡 Transport http prêt: {self._url}")

    def _request_headers(self) -> dict:
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
            "MCP-Protocol-Version": MCP_PROTOCOL_VERSION,
        }
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        return headers

    async def _exchange(self, message: JsonRpcMessage, future: asyncio.Future, timeout: Optional[float]):
        await self._write(message, timeout=timeout)
        if not future.done():
            raise ProtocolError(
                "Réponse HTTP sans message JSON-RPC correspondant", method=message.get("method")
            )
        return future.result()

    async def _write(self, message: JsonRpcMessage, timeout: Optional[float] = None) -> None:
        self._ensure_open()
        if self._client is None:
            await self.start()
        request_timeout = httpx.Timeout(timeout or self._timeout, connect=self._connect_timeout)
        expected_id = message.get("id") if jsonrpc.is_request(message) else None
        try:
            async with self._client.stream(
                "POST", self._url, json=message, headers=self._request_headers(), timeout=request_timeout
            ) as response:
                session_id = response.headers.get(SESSION_HEADER)
                if session_id:
                    self._session_id = session_id

                if response.status_code in (202, 204):
                    return
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"Requête HTTP refusée: HTTP {response.status_code} {body[:200]}",
                        transport="http",
                        status_code=response.status_code,
                    )

                content_type = response.headers.get("content-type", "")
                if "text/event-stream" in content_type:
                    await self._consume_event_stream(response, expected_id)
                else:
                    body = await response.aread()
                    if body.strip():
                        try:
                            await self._dispatch(json.loads(body))
                        except json.JSONDecodeError as e:
                            raise ProtocolError(
                                "Corps de réponse HTTP non JSON",
                                method=message.get("method"),
                                evidence=body[:200].decode("utf-8", errors="replace"),
                            ) from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Délai HTTP dépassé ({self._url}): {e!r}", transport="http") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Erreur HTTP ({self._url}): {e!r}", transport="http") from e

    async def _consume_event_stream(self, response: httpx.Response, expected_id) -> None:
        async for event in aiter_events(response.aiter_lines()):
            if event.event != "message" or not event.data:
                continue
            try:
                obj = json.loads(event.data)
            except json.JSONDecodeError:
                logger.debug(f"Événement non JSON dans la réponse HTTP: {event.data[:100]}")
                continue
            await self._dispatch(obj)
            if expected_id is not None and jsonrpc.is_response(obj) and obj.get("id") == expected_id:
                return

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._cancel_background()
        self._fail_pending(ProtocolError("Transport http fermé"))
        client, self._client = self._client, None
        if client is None:
            return
        if self._session_id:
            try:
                await client.delete(
                    self._url, headers={SESSION_HEADER: self._session_id}, timeout=self._connect_timeout
                )
            except httpx.HTTPError as e:
                logger.debug(f"DELETE de session ignoré: {e!r}")
        await client.aclose()
        logger.debug(f"Transport http fermé ({self._url})")
