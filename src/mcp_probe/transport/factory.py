"""mcp_probe.transport.factory

Construction du transport adapté à une `ConnectionConfig`.

Règles de contexte par type de transport:
- stdio: lié aux pipes d'un processus vivant; délai de connexion = délai appelant.
- sse: flux long sans timeout de lecture; seuls les POST sont bornés.
- http: chaque requête est bornée par le délai appelant.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

import httpx

from ..core.constants import DEFAULT_HTTP_CONNECT_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
from ..core.exceptions import TransportError
from ..core.models import ConnectionConfig, ProcessHandle, ProcessState, TransportKind
from ..features.process.supervisor import ProcessSupervisor
from .base import Transport
from .http import HttpTransport
from .sse import SseTransport
from .stdio import StdioTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionStrategy:
    kind: TransportKind
    long_lived: bool
    description: str

    def connection_timeout(self, requested: float) -> Optional[float]:
        """Timeout de lecture du canal: aucun pour un flux long."""
        return None if self.long_lived else requested

    def operation_timeout(self, requested: float) -> float:
        return requested


STRATEGIES: Dict[TransportKind, ConnectionStrategy] = {
    TransportKind.STDIO: ConnectionStrategy(
        TransportKind.STDIO, long_lived=False, description="Processus local, JSON-RPC ligne par ligne sur stdin/stdout"
    ),
    TransportKind.SSE: ConnectionStrategy(
        TransportKind.SSE, long_lived=True, description="GET event-stream persistant + POST par message"
    ),
    TransportKind.HTTP: ConnectionStrategy(
        TransportKind.HTTP, long_lived=False, description="POST requête/réponse (JSON ou event-stream)"
    ),
}


def _require_http_url(config: ConnectionConfig) -> None:
    if not config.url:
        raise TransportError(f"URL requise pour le transport {config.transport.value}", transport=config.transport.value)
    parsed = urlparse(config.url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise TransportError(f"URL invalide: {config.url}", transport=config.transport.value)


class TransportFactory:
    """Construit un `Transport` par type déclaré."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_connect_timeout: float = DEFAULT_HTTP_CONNECT_TIMEOUT,
    ):
        self._supervisor = supervisor
        self._http_transport = http_transport
        self._request_timeout = request_timeout
        self._http_connect_timeout = http_connect_timeout
        self._builders: Dict[TransportKind, Callable[[ConnectionConfig, Optional[ProcessHandle]], Transport]] = {
            TransportKind.STDIO: self._build_stdio,
            TransportKind.SSE: self._build_sse,
            TransportKind.HTTP: self._build_http,
        }

    @staticmethod
    def strategy_for(kind: TransportKind) -> ConnectionStrategy:
        return STRATEGIES[kind]

    @staticmethod
    def describe(kind: TransportKind) -> str:
        return STRATEGIES[kind].description

    def supported_kinds(self) -> list:
        return list(self._builders)

    def validate_config(self, config: ConnectionConfig) -> None:
        """Champs requis par type (commande pour stdio, URL pour sse/http)."""
        if config.transport not in self._builders:
            raise TransportError(f"Type de transport non supporté: {config.transport.value}")
        if config.transport is TransportKind.STDIO:
            if not config.command:
                raise TransportError("Commande requise pour le transport stdio", transport="stdio")
        else:
            _require_http_url(config)

    def build(self, config: ConnectionConfig, process: Optional[ProcessHandle] = None) -> Transport:
        self.validate_config(config)
        transport = self._builders[config.transport](config, process)
        logger.debug(f"Transport construit: {config.transport.value} ({type(transport).__name__})")
        return transport

    def _build_stdio(self, config: ConnectionConfig, process: Optional[ProcessHandle]) -> Transport:
        # Sorti mais pas encore collecté: pipes toujours lisibles
        if process is None or self._supervisor.state(process) is not ProcessState.RUNNING:
            raise TransportError("Le transport stdio exige un processus lancé", transport="stdio")
        return StdioTransport(self._supervisor.pipes(process), process=process)

    def _build_sse(self, config: ConnectionConfig, process: Optional[ProcessHandle]) -> Transport:
        strategy = self.strategy_for(TransportKind.SSE)
        return SseTransport(
            config.url,
            headers=config.headers,
            stream_timeout=strategy.connection_timeout(config.timeout),
            connect_timeout=min(self._http_connect_timeout, config.timeout),
            request_timeout=self._request_timeout,
            http_transport=self._http_transport,
        )

    def _build_http(self, config: ConnectionConfig, process: Optional[ProcessHandle]) -> Transport:
        strategy = self.strategy_for(TransportKind.HTTP)
        return HttpTransport(
            config.url,
            headers=config.headers,
            timeout=strategy.connection_timeout(config.timeout),
            connect_timeout=self._http_connect_timeout,
            http_transport=self._http_transport,
        )
