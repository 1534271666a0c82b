"""mcp_probe.transport.sse

Transport event-stream (SSE) en deux phases:

1. GET long (`Accept: text/event-stream`) lancé dans sa propre tâche; le premier
   événement `endpoint` donne l'URL de POST propre à la session.
2. Chaque message est POSTé sur cet endpoint (accusé 2xx immédiat); la réponse
   arrive plus tard sur le flux.

Le flux n'a pas de timeout de lecture et ne dépend d'aucun timeout appelant:
annuler un appel (start() compris) ne ferme pas le GET. Seul close() l'arrête.
Les POST utilisent, eux, un timeout borné par requête.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Mapping, Optional
from urllib.parse import parse_qs, urljoin, urlparse

import httpx

from ..core.constants import DEFAULT_HTTP_CONNECT_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
from ..core.exceptions import ProtocolError, TransportError
from ..core.models import TransportKind
from .base import JsonRpcTransport
from .event_stream import ServerSentEvent, aiter_events
from .jsonrpc import JsonRpcMessage

logger = logging.getLogger(__name__)


class SseTransport(JsonRpcTransport):
    kind = TransportKind.SSE

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        stream_timeout: Optional[float] = None,
        connect_timeout: float = DEFAULT_HTTP_CONNECT_TIMEOUT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self._url = url
        self._headers = dict(headers or {})
        self._stream_timeout = stream_timeout
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._http_transport = http_transport

        self._client: Optional[httpx.AsyncClient] = None
        self._stream_task: Optional[asyncio.Task] = None
        self._endpoint_future: Optional[asyncio.Future] = None
        self._endpoint: Optional[str] = None
        self._session_id: Optional[str] = None
        self._stream_open = False

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def stream_open(self) -> bool:
        return self._stream_open and self._stream_task is not None and not self._stream_task.done()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # read=None: le flux peut rester silencieux indéfiniment
            self._client = httpx.AsyncClient(
                transport=self._http_transport,
                timeout=httpx.Timeout(self._stream_timeout, connect=self._connect_timeout),
                headers=self._headers,
            )
        return self._client

    async def start(self) -> None:
        self._ensure_open()
        loop = asyncio.get_running_loop()
        if self._stream_task is None:
            self._endpoint_future = loop.create_future()
            self._stream_task = loop.create_task(self._run_stream(), name="mcp-sse-stream")
        await self.wait_endpoint()

    async def wait_endpoint(self) -> str:
        """Attend l'événement `endpoint`; une annulation ici ne touche pas au flux."""
        if self._endpoint_future is None:
            raise TransportError("Transport sse non démarré", transport="sse")
        return await asyncio.shield(self._endpoint_future)

    async def _run_stream(self) -> None:
        client = self._get_client()
        error: Optional[BaseException] = None
        try:
            async with client.stream(
                "GET", self._url, headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"}
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise TransportError(
                        f"Ouverture du flux SSE refusée: HTTP {response.status_code}",
                        transport="sse",
                        status_code=response.status_code,
                    )
                self._stream_open = True
                logger.info(f"📡 Flux SSE ouvert: {self._url}")
                async for event in aiter_events(response.aiter_lines()):
                    await self._handle_event(event)
            error = TransportError("Flux SSE fermé par le serveur", transport="sse")
        except asyncio.CancelledError:
            error = ProtocolError("Transport sse fermé")
            raise
        except TransportError as e:
            error = e
        except httpx.HTTPError as e:
            error = TransportError(f"Erreur du flux SSE: {e!r}", transport="sse")
        finally:
            self._stream_open = False
            if error is not None and not self._closed:
                logger.warning(f"⚠️ {error.message}")
            if self._endpoint_future is not None and not self._endpoint_future.done():
                self._endpoint_future.set_exception(error or TransportError("Flux SSE terminé", transport="sse"))
                # Récupérée par wait_endpoint() si quelqu'un attend encore
                self._endpoint_future.add_done_callback(lambda f: f.exception())
            self._fail_pending(error or TransportError("Flux SSE terminé", transport="sse"))

    async def _handle_event(self, event: ServerSentEvent) -> None:
        if event.event == "endpoint":
            self._set_endpoint(event.data.strip())
            return
        if event.event != "message":
            logger.debug(f"Événement SSE ignoré: {event.event}")
            return
        try:
            obj = json.loads(event.data)
        except json.JSONDecodeError:
            logger.debug(f"Événement SSE non JSON: {event.data[:100]}")
            return
        await self._dispatch(obj)

    def _set_endpoint(self, data: str) -> None:
        endpoint = urljoin(self._url, data)
        if urlparse(endpoint).netloc != urlparse(self._url).netloc:
            logger.warning(f"⚠️ Endpoint SSE sur une autre origine ignoré: {endpoint}")
            return
        self._endpoint = endpoint
        query = parse_qs(urlparse(endpoint).query)
        for key in ("sessionId", "session_id"):
            if query.get(key):
                self._session_id = query[key][0]
                break
        logger.debug(f"Endpoint SSE: {endpoint} (session={self._session_id})")
        if self._endpoint_future is not None and not self._endpoint_future.done():
            self._endpoint_future.set_result(endpoint)

    async def _write(self, message: JsonRpcMessage, timeout: Optional[float] = None) -> None:
        self._ensure_open()
        endpoint = self._endpoint
        if endpoint is None:
            endpoint = await self.wait_endpoint()
        client = self._get_client()
        try:
            response = await client.post(
                endpoint,
                json=message,
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(timeout or self._request_timeout, connect=self._connect_timeout),
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"POST SSE expiré: {e!r}", transport="sse") from e
        except httpx.HTTPError as e:
            raise TransportError(f"POST SSE en échec: {e!r}", transport="sse") from e

        if response.status_code not in (200, 202, 204):
            raise TransportError(
                f"POST SSE refusé: HTTP {response.status_code}",
                transport="sse",
                status_code=response.status_code,
            )
        # Certains serveurs répondent directement dans le corps du POST
        if response.content and "application/json" in response.headers.get("content-type", ""):
            try:
                await self._dispatch(response.json())
            except json.JSONDecodeError:
                logger.debug("Corps de POST SSE non JSON ignoré")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        task, self._stream_task = self._stream_task, None
        if task is not None and not task.done():
            task.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._cancel_background()
        self._fail_pending(ProtocolError("Transport sse fermé"))
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.debug(f"Transport sse fermé ({self._url})")
