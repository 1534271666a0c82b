"""mcp_probe.transport.base

Interface commune des transports MCP et répartition des messages entrants.

Capacités: start, send_request, send_notification, set_notification_handler, close.

`JsonRpcTransport` implémente la corrélation requête/réponse (un futur par id
en vol) et répond lui-même aux requêtes initiées par le serveur: `ping`
reçoit un résultat vide, toute autre méthode une erreur -32601.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from ..core.exceptions import McpProbeError, ProtocolError, ProtocolTimeoutError
from ..core.models import Direction, TransportKind
from . import jsonrpc
from .jsonrpc import JsonRpcMessage

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[JsonRpcMessage], Union[None, Awaitable[None]]]
TrafficObserver = Callable[[Direction, JsonRpcMessage], None]


class Transport(ABC):
    """Canal transportant les messages JSON-RPC vers un serveur MCP."""

    kind: TransportKind

    @abstractmethod
    async def start(self) -> None:
        """Établit le canal (lecteurs stdio, flux sse, client http)."""

    @abstractmethod
    async def send_request(self, message: JsonRpcMessage, timeout: Optional[float] = None) -> JsonRpcMessage:
        """Envoie une requête et retourne la réponse JSON-RPC brute (result ou error)."""

    @abstractmethod
    async def send_notification(self, message: JsonRpcMessage) -> None:
        """Envoie une notification (aucune réponse attendue)."""

    @abstractmethod
    def set_notification_handler(self, handler: Optional[NotificationHandler]) -> None:
        """Installe le callback des notifications serveur."""

    @abstractmethod
    async def close(self) -> None:
        """Ferme le canal; idempotent."""

    def set_traffic_observer(self, observer: Optional[TrafficObserver]) -> None:
        """Observe les requêtes serveur et les réponses émises par le transport lui-même."""


class JsonRpcTransport(Transport):
    """Base des transports concrets: futurs en attente, dispatch, tâches annexes."""

    def __init__(self):
        self._pending: Dict[Any, asyncio.Future] = {}
        self._notification_handler: Optional[NotificationHandler] = None
        self._traffic_observer: Optional[TrafficObserver] = None
        self._background: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # À fournir par les sous-classes
    # ------------------------------------------------------------------

    @abstractmethod
    async def _write(self, message: JsonRpcMessage, timeout: Optional[float] = None) -> None:
        """Émet un message sur le canal."""

    # ------------------------------------------------------------------
    # Émission
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise ProtocolError(f"Transport {self.kind.value} fermé")

    async def send_request(self, message: JsonRpcMessage, timeout: Optional[float] = None) -> JsonRpcMessage:
        self._ensure_open()
        request_id = message.get("id")
        method = message.get("method")
        if request_id is None:
            raise ProtocolError("Requête JSON-RPC sans id", method=method)
        if request_id in self._pending:
            raise ProtocolError(f"Id de requête déjà en vol: {request_id}", method=method)

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            try:
                return await asyncio.wait_for(self._exchange(message, future, timeout), timeout)
            except asyncio.TimeoutError:
                raise ProtocolTimeoutError(
                    f"Pas de réponse à '{method}' après {timeout}s", method=method, timeout=timeout
                ) from None
        finally:
            self._pending.pop(request_id, None)

    async def _exchange(
        self, message: JsonRpcMessage, future: asyncio.Future, timeout: Optional[float]
    ) -> JsonRpcMessage:
        await self._write(message, timeout=timeout)
        return await future

    async def send_notification(self, message: JsonRpcMessage) -> None:
        self._ensure_open()
        await self._write(message)

    def set_notification_handler(self, handler: Optional[NotificationHandler]) -> None:
        self._notification_handler = handler

    def set_traffic_observer(self, observer: Optional[TrafficObserver]) -> None:
        self._traffic_observer = observer

    def _observe(self, direction: Direction, message: JsonRpcMessage) -> None:
        observer = self._traffic_observer
        if observer is None:
            return
        try:
            observer(direction, message)
        except Exception:
            logger.exception(f"Erreur dans l'observateur de trafic ({message.get('method')})")

    # ------------------------------------------------------------------
    # Réception
    # ------------------------------------------------------------------

    async def _dispatch(self, obj: object) -> None:
        if isinstance(obj, list):
            for item in obj:
                await self._dispatch(item)
            return
        if not isinstance(obj, dict):
            logger.debug(f"Message ignoré (type {type(obj).__name__})")
            return

        if jsonrpc.is_response(obj):
            future = self._pending.get(obj.get("id"))
            if future is None or future.done():
                logger.debug(f"Réponse sans requête en attente (id={obj.get('id')!r})")
                return
            future.set_result(obj)
        elif jsonrpc.is_request(obj):
            self._spawn_background(self._answer_server_request(obj))
        elif jsonrpc.is_notification(obj):
            self._deliver_notification(obj)
        else:
            logger.debug(f"Message JSON-RPC non reconnu: {str(obj)[:100]}")

    async def _answer_server_request(self, request: JsonRpcMessage) -> None:
        method = request.get("method")
        self._observe(Direction.INBOUND, request)
        if method == "ping":
            reply = jsonrpc.make_result(request.get("id"), {})
        else:
            logger.debug(f"Requête serveur non supportée: {method}")
            reply = jsonrpc.method_not_found(request.get("id"), str(method))
        if self._closed:
            return
        try:
            await self._write(reply)
        except (McpProbeError, OSError) as e:
            logger.debug(f"Réponse à la requête serveur '{method}' non envoyée: {e}")
            return
        self._observe(Direction.OUTBOUND, reply)

    def _deliver_notification(self, notification: JsonRpcMessage) -> None:
        handler = self._notification_handler
        if handler is None:
            logger.debug(f"Notification sans handler: {notification.get('method')}")
            return
        try:
            result = handler(notification)
        except Exception:
            logger.exception(f"Erreur dans le handler de notification ({notification.get('method')})")
            return
        if inspect.isawaitable(result):
            self._spawn_background(self._await_handler(result, notification.get("method")))

    @staticmethod
    async def _await_handler(awaitable: Awaitable[None], method: Optional[str]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception(f"Erreur dans le handler de notification ({method})")

    # ------------------------------------------------------------------
    # Utilitaires
    # ------------------------------------------------------------------

    def _spawn_background(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _fail_pending(self, error: BaseException) -> None:
        for future in list(self._pending.values()):
            if not future.done():
                future.set_exception(error)

    async def _cancel_background(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
