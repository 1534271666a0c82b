"""mcp_probe.services.connection

Orchestration d'une connexion MCP: validation → lancement → transport →
instrumentation → handshake, puis opérations et déconnexion.

Machine à états (une seule variable, table de transitions explicite):

    idle → connecting → connected → disconnecting → idle
                 ↘ failed → connecting | disconnecting

- connect() n'est pas réentrant: un second appel pendant connecting/connected
  est refusé (ConnectionStateError), jamais mis en file.
- disconnect() est idempotent: le premier appel crée la tâche de nettoyage,
  les appels concurrents l'attendent, les suivants trouvent `idle`.
- Tout échec de connexion nettoie (transport fermé, processus terminé) avant
  de passer en `failed`.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from ..core.constants import DEFAULT_REQUEST_TIMEOUT, EVIDENCE_MAX_CHARS, STARTUP_EXIT_WAIT
from ..core.exceptions import (
    ConnectionStateError,
    McpProbeError,
    NotConnectedError,
    ProtocolError,
    ProtocolTimeoutError,
    StartupFailureError,
    TransportError,
)
from ..core.models import (
    CallToolResult,
    ConnectionConfig,
    ConnectionHealth,
    ConnectionState,
    ErrorStatistics,
    GetPromptResult,
    ProcessHandle,
    ProcessState,
    Prompt,
    Resource,
    ResourceContents,
    RingBufferEntry,
    ServerInfo,
    Tool,
    TransportKind,
)
from ..features.diagnostics.classifier import StartupErrorClassifier
from ..features.diagnostics.tracker import ErrorTracker
from ..features.instrumentation.recorder import InstrumentedTransport, ProtocolInstrumentation
from ..features.process.supervisor import ProcessSupervisor
from ..features.security.validator import CommandValidator
from ..transport.base import Transport
from ..transport.factory import TransportFactory
from ..transport.jsonrpc import JsonRpcMessage
from ..transport.session import McpSession
from ..transport.stdio import StdioTransport

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[ConnectionState, frozenset] = {
    ConnectionState.IDLE: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.CONNECTED, ConnectionState.FAILED}),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTING}),
    ConnectionState.DISCONNECTING: frozenset({ConnectionState.IDLE}),
    ConnectionState.FAILED: frozenset({ConnectionState.CONNECTING, ConnectionState.DISCONNECTING}),
}

NotificationListener = Callable[[JsonRpcMessage], None]


class ConnectionService:
    """Point d'entrée unique des appelants (CLI/TUI) vers un serveur MCP."""

    def __init__(
        self,
        *,
        supervisor: ProcessSupervisor,
        validator: CommandValidator,
        factory: TransportFactory,
        instrumentation: ProtocolInstrumentation,
        classifier: StartupErrorClassifier,
        tracker: ErrorTracker,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        startup_exit_wait: float = STARTUP_EXIT_WAIT,
    ):
        self._supervisor = supervisor
        self._validator = validator
        self._factory = factory
        self._instrumentation = instrumentation
        self._classifier = classifier
        self._tracker = tracker
        self._request_timeout = request_timeout
        self._startup_exit_wait = startup_exit_wait

        self._state = ConnectionState.IDLE
        self._state_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._config: Optional[ConnectionConfig] = None
        self._process: Optional[ProcessHandle] = None
        self._lingering: Optional[ProcessHandle] = None
        self._raw_transport: Optional[Transport] = None
        self._transport: Optional[InstrumentedTransport] = None
        self._session: Optional[McpSession] = None

        self._connect_task: Optional[asyncio.Task] = None
        self._connect_cancellable = False
        self._connect_aborted = False
        self._disconnect_task: Optional[asyncio.Future] = None
        self._background: Set[asyncio.Task] = set()
        self._listener: Optional[NotificationListener] = None

    # ------------------------------------------------------------------
    # État
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def config(self) -> Optional[ConnectionConfig]:
        return self._config

    @property
    def server_info(self) -> Optional[ServerInfo]:
        return self._session.server_info if self._session else None

    @property
    def instrumentation(self) -> ProtocolInstrumentation:
        return self._instrumentation

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    def _transition(self, target: ConnectionState) -> ConnectionState:
        with self._state_lock:
            return self._transition_locked(target)

    def _transition_locked(self, target: ConnectionState) -> ConnectionState:
        previous = self._state
        if target not in _TRANSITIONS[previous]:
            raise ConnectionStateError(
                f"Transition interdite: {previous.value} → {target.value}",
                current=previous.value,
                target=target.value,
            )
        self._state = target
        logger.debug(f"État connexion: {previous.value} → {target.value}")
        return previous

    # ------------------------------------------------------------------
    # Connexion
    # ------------------------------------------------------------------

    async def connect(self, config: ConnectionConfig) -> ServerInfo:
        """
        Établit la connexion et réalise le handshake dans `config.timeout`.

        Raises:
            ConnectionStateError: connexion déjà en cours ou établie
            ValidationError / ProcessSpawnError: avant tout handshake (stdio)
            StartupFailureError: le processus n'est jamais devenu un serveur (stdio)
            TransportError / ProtocolError: échec réseau ou protocolaire
        """
        with self._state_lock:
            if self._state not in (ConnectionState.IDLE, ConnectionState.FAILED):
                raise ConnectionStateError(
                    f"Connexion impossible dans l'état {self._state.value}",
                    current=self._state.value,
                    target=ConnectionState.CONNECTING.value,
                )
            self._transition_locked(ConnectionState.CONNECTING)

        self._loop = asyncio.get_running_loop()
        self._config = config
        self._connect_aborted = False
        self._connect_cancellable = True
        task = self._loop.create_task(self._connect_flow(config), name="mcp-connect")
        self._connect_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._connect_aborted:
                raise ConnectionStateError(
                    "Connexion interrompue par une déconnexion",
                    current=self.state.value,
                ) from None
            raise

    async def _connect_flow(self, config: ConnectionConfig) -> ServerInfo:
        target = config.command if config.transport is TransportKind.STDIO else config.url
        logger.info(f"🔌 Connexion MCP ({config.transport.value}): {target}")
        try:
            server_info = await self._establish(config)
        except (Exception, asyncio.CancelledError) as e:
            self._connect_cancellable = False
            await self._release_resources()
            if isinstance(e, Exception):
                self._tracker.record(e, "connect")
            self._transition(ConnectionState.FAILED)
            raise
        finally:
            self._connect_cancellable = False
            self._connect_task = None
        self._transition(ConnectionState.CONNECTED)
        logger.info(f"✅ Connecté à {server_info.name or target}")
        return server_info

    async def _establish(self, config: ConnectionConfig) -> ServerInfo:
        process = None
        if config.transport is TransportKind.STDIO:
            self._validator.validate(config.command, config.args)
            await self._reclaim_lingering()
            process = await self._supervisor.spawn(config.command, config.args, env=config.env)
            self._process = process

        raw = self._factory.build(config, process)
        self._raw_transport = raw
        transport = self._instrumentation.wrap(raw)
        self._transport = transport
        session = McpSession(transport, request_timeout=self._request_timeout)
        self._session = session
        transport.set_notification_handler(self._on_notification)

        try:
            return await asyncio.wait_for(self._handshake(transport, session, config.timeout), config.timeout)
        except asyncio.TimeoutError:
            error: McpProbeError = ProtocolTimeoutError(
                f"Handshake MCP non terminé après {config.timeout}s", method="initialize", timeout=config.timeout
            )
            raise await self._diagnose(error) from None
        except (ProtocolError, TransportError) as e:
            diagnosed = await self._diagnose(e)
            if diagnosed is e:
                raise
            raise diagnosed from e

    @staticmethod
    async def _handshake(transport: Transport, session: McpSession, timeout: float) -> ServerInfo:
        await transport.start()
        return await session.initialize(timeout=timeout)

    async def _diagnose(self, error: McpProbeError) -> McpProbeError:
        """Pour stdio sans trafic valide: distingue échec de démarrage et erreur protocolaire."""
        raw = self._raw_transport
        if not isinstance(raw, StdioTransport) or self._process is None:
            return error
        if raw.protocol_traffic_seen:
            return error

        exit_code = await self._supervisor.wait(self._process, timeout=self._startup_exit_wait)
        await raw.wait_output_closed(self._startup_exit_wait if exit_code is not None else 0.1)
        early_output = raw.early_output()
        classification = self._classifier.classify(exit_code, early_output)
        logger.debug(
            f"Diagnostic démarrage: exit={exit_code} catégorie={classification.category.value} "
            f"({len(early_output)} caractères capturés)"
        )
        if classification.is_startup_failure:
            return StartupFailureError(classification, exit_code=exit_code)

        if error.evidence is None and early_output.strip():
            error.evidence = early_output.strip()[-EVIDENCE_MAX_CHARS:]
        if exit_code is not None:
            error.details.setdefault("exit_code", exit_code)
        return error

    # ------------------------------------------------------------------
    # Déconnexion
    # ------------------------------------------------------------------

    async def disconnect(self) -> None:
        """Nettoyage exécuté une seule fois, quel que soit le nombre d'appelants."""
        task = self._disconnect_task
        if task is None:
            if self.state is ConnectionState.IDLE:
                return
            task = asyncio.ensure_future(self._disconnect_once())
            self._disconnect_task = task
        await asyncio.shield(task)

    async def _disconnect_once(self) -> None:
        try:
            connect_task = self._connect_task
            if connect_task is not None and not connect_task.done():
                if self._connect_cancellable:
                    logger.info("⏹️ Déconnexion demandée pendant la connexion, annulation")
                    self._connect_aborted = True
                    connect_task.cancel()
                await asyncio.wait([connect_task])

            if self.state not in (ConnectionState.CONNECTED, ConnectionState.FAILED):
                return
            self._transition(ConnectionState.DISCONNECTING)
            try:
                await self._release_resources()
            finally:
                self._transition(ConnectionState.IDLE)
            logger.info("👋 Déconnecté")
        finally:
            self._disconnect_task = None

    def request_disconnect(self) -> None:
        """Variante sûre depuis un handler de signal ou un autre thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return

        def schedule():
            task = loop.create_task(self.disconnect())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            schedule()
        else:
            loop.call_soon_threadsafe(schedule)

    async def _release_resources(self) -> None:
        transport, self._transport = self._transport, None
        self._raw_transport = None
        self._session = None
        if transport is not None:
            try:
                await transport.close()
            except McpProbeError as e:
                logger.warning(f"⚠️ Fermeture du transport en erreur: {e}")

        process, self._process = self._process, None
        if process is not None:
            code = await self._supervisor.terminate(process)
            if code is None and self._supervisor.state(process) is not ProcessState.EXITED:
                # Sortie non confirmée: le processus reste rattaché au service
                self._lingering = process

    async def _reclaim_lingering(self) -> None:
        """Un seul processus vivant par service: l'ancien doit être sorti avant tout lancement."""
        process = self._lingering
        if process is None:
            return
        if self._supervisor.state(process) is not ProcessState.EXITED:
            await self._supervisor.terminate(process)
        if self._supervisor.state(process) is not ProcessState.EXITED:
            raise ConnectionStateError(
                f"Le processus précédent (pid {process.pid}) n'a toujours pas quitté",
                current=self.state.value,
            )
        self._lingering = None

    async def close(self) -> None:
        """Déconnecte puis arrête le superviseur (reaper compris)."""
        await self.disconnect()
        await self._supervisor.close()

    async def __aenter__(self) -> "ConnectionService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Opérations
    # ------------------------------------------------------------------

    def _require_session(self, operation: str) -> McpSession:
        with self._state_lock:
            state = self._state
        session = self._session
        if state is not ConnectionState.CONNECTED or session is None:
            raise NotConnectedError(operation=operation, state=state.value)
        return session

    async def _call(self, operation: str, call):
        session = self._require_session(operation)
        try:
            return await call(session)
        except McpProbeError as e:
            self._tracker.record(e, operation)
            raise

    async def list_tools(self, timeout: Optional[float] = None) -> List[Tool]:
        return await self._call("list_tools", lambda s: s.list_tools(timeout=timeout))

    async def call_tool(
        self, name: str, arguments: Optional[Mapping[str, Any]] = None, timeout: Optional[float] = None
    ) -> CallToolResult:
        return await self._call("call_tool", lambda s: s.call_tool(name, arguments, timeout=timeout))

    async def list_resources(self, timeout: Optional[float] = None) -> List[Resource]:
        return await self._call("list_resources", lambda s: s.list_resources(timeout=timeout))

    async def read_resource(self, uri: str, timeout: Optional[float] = None) -> List[ResourceContents]:
        return await self._call("read_resource", lambda s: s.read_resource(uri, timeout=timeout))

    async def list_prompts(self, timeout: Optional[float] = None) -> List[Prompt]:
        return await self._call("list_prompts", lambda s: s.list_prompts(timeout=timeout))

    async def get_prompt(
        self, name: str, arguments: Optional[Mapping[str, Any]] = None, timeout: Optional[float] = None
    ) -> GetPromptResult:
        return await self._call("get_prompt", lambda s: s.get_prompt(name, arguments, timeout=timeout))

    async def ping(self, timeout: Optional[float] = None) -> None:
        await self._call("ping", lambda s: s.ping(timeout=timeout))

    # ------------------------------------------------------------------
    # Observabilité
    # ------------------------------------------------------------------

    def set_notification_listener(self, listener: Optional[NotificationListener]) -> None:
        self._listener = listener

    def _on_notification(self, notification: JsonRpcMessage) -> None:
        logger.debug(f"🔔 Notification serveur: {notification.get('method')}")
        if self._listener is not None:
            self._listener(notification)

    def health(self) -> ConnectionHealth:
        state = self.state
        return ConnectionHealth(
            connected=state is ConnectionState.CONNECTED,
            state=state,
            last_error=self._tracker.last_error,
            error_counts=self._tracker.counts(),
            server_info=self.server_info,
        )

    def error_statistics(self) -> ErrorStatistics:
        return self._tracker.statistics()

    def reset_error_statistics(self) -> None:
        self._tracker.reset()

    def debug_snapshot(self) -> List[RingBufferEntry]:
        return self._instrumentation.snapshot()

    def clear_debug(self) -> None:
        self._instrumentation.clear()
