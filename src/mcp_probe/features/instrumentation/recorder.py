"""mcp_probe.features.instrumentation.recorder

Journal du trafic protocolaire, pour la vue debug.

`ProtocolInstrumentation` possède le tampon circulaire; `wrap()` retourne un
décorateur de `Transport` qui transfère chaque appel au transport enveloppé
puis enregistre une entrée (avant ET après pour les requêtes). Les
notifications entrantes sont enregistrées avant d'être livrées au handler;
les requêtes du serveur et les réponses automatiques du transport
remontent par son observateur de trafic.

La vue debug n'a besoin que de snapshot() et clear(): elle ne touche
jamais le transport.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles

from ...core.constants import DEBUG_BUFFER_CAPACITY
from ...core.models import Direction, MessageKind, RingBufferEntry
from ...transport import jsonrpc
from ...transport.base import NotificationHandler, Transport
from ...transport.jsonrpc import JsonRpcMessage
from .ring_buffer import RingBuffer

logger = logging.getLogger(__name__)


class ProtocolInstrumentation:
    """Propriétaire du journal de trafic (une instance par service)."""

    def __init__(self, capacity: int = DEBUG_BUFFER_CAPACITY):
        self._buffer: RingBuffer[RingBufferEntry] = RingBuffer(capacity)

    @property
    def capacity(self) -> int:
        return self._buffer.capacity

    def wrap(self, transport: Transport) -> "InstrumentedTransport":
        return InstrumentedTransport(transport, self)

    # ------------------------------------------------------------------
    # Enregistrement
    # ------------------------------------------------------------------

    def record(
        self,
        direction: Direction,
        kind: MessageKind,
        payload: str,
        method: Optional[str] = None,
        message_id: Any = None,
    ) -> RingBufferEntry:
        entry = RingBufferEntry(
            timestamp=datetime.now(timezone.utc),
            direction=direction,
            kind=kind,
            payload=payload,
            method=method,
            message_id=message_id,
        )
        self._buffer.append(entry)
        return entry

    def record_message(
        self, direction: Direction, message: JsonRpcMessage, kind: Optional[MessageKind] = None
    ) -> RingBufferEntry:
        return self.record(
            direction,
            kind or jsonrpc.classify(message),
            jsonrpc.encode(message),
            method=message.get("method") if isinstance(message, dict) else None,
            message_id=message.get("id") if isinstance(message, dict) else None,
        )

    def record_event(self, text: str) -> RingBufferEntry:
        return self.record(Direction.OUTBOUND, MessageKind.TRANSPORT_EVENT, text)

    def record_error(
        self, direction: Direction, error: BaseException, method: Optional[str] = None, message_id: Any = None
    ) -> RingBufferEntry:
        return self.record(
            direction,
            MessageKind.ERROR,
            f"{type(error).__name__}: {getattr(error, 'message', None) or error}",
            method=method,
            message_id=message_id,
        )

    # ------------------------------------------------------------------
    # Consultation
    # ------------------------------------------------------------------

    def snapshot(self) -> List[RingBufferEntry]:
        return self._buffer.snapshot()

    def clear(self) -> None:
        self._buffer.clear()

    def stats(self) -> Dict[str, int]:
        entries = self._buffer.snapshot()
        counts = {kind.value: 0 for kind in MessageKind}
        for entry in entries:
            counts[entry.kind.value] += 1
        counts["total"] = len(entries)
        counts["evicted"] = self._buffer.evicted
        return counts

    def format_lines(self) -> List[str]:
        return [entry.format_line() for entry in self._buffer.snapshot()]

    async def export_jsonl(self, path: Union[str, Path]) -> int:
        """Écrit le snapshot courant en JSONL; retourne le nombre d'entrées."""
        entries = self._buffer.snapshot()
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "w", encoding="utf-8") as f:
            for entry in entries:
                await f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        logger.info(f"💾 {len(entries)} entrées de trafic exportées vers {target}")
        return len(entries)


class InstrumentedTransport(Transport):
    """Décorateur: même interface que le transport enveloppé, trafic journalisé."""

    def __init__(self, inner: Transport, instrumentation: ProtocolInstrumentation):
        self._inner = inner
        self._instrumentation = instrumentation
        # Requêtes serveur et réponses automatiques ne passent pas par ce décorateur
        inner.set_traffic_observer(instrumentation.record_message)

    @property
    def inner(self) -> Transport:
        return self._inner

    @property
    def kind(self):
        return self._inner.kind

    async def start(self) -> None:
        try:
            await self._inner.start()
        except Exception as e:
            self._instrumentation.record_error(Direction.OUTBOUND, e, method="start")
            raise
        self._instrumentation.record_event(f"start {self.kind.value}")

    async def send_request(self, message: JsonRpcMessage, timeout: Optional[float] = None) -> JsonRpcMessage:
        method = message.get("method")
        message_id = message.get("id")
        self._instrumentation.record_message(Direction.OUTBOUND, message, MessageKind.REQUEST)
        try:
            response = await self._inner.send_request(message, timeout)
        except Exception as e:
            self._instrumentation.record_error(Direction.INBOUND, e, method=method, message_id=message_id)
            raise
        self._instrumentation.record(
            Direction.INBOUND,
            jsonrpc.classify(response),
            jsonrpc.encode(response),
            method=method,
            message_id=response.get("id", message_id),
        )
        return response

    async def send_notification(self, message: JsonRpcMessage) -> None:
        try:
            await self._inner.send_notification(message)
        except Exception as e:
            self._instrumentation.record_error(Direction.OUTBOUND, e, method=message.get("method"))
            raise
        self._instrumentation.record_message(Direction.OUTBOUND, message, MessageKind.NOTIFICATION)

    def set_notification_handler(self, handler: Optional[NotificationHandler]) -> None:
        if handler is None:
            self._inner.set_notification_handler(None)
            return

        def recording_handler(notification: JsonRpcMessage):
            self._instrumentation.record_message(Direction.INBOUND, notification, MessageKind.NOTIFICATION)
            return handler(notification)

        self._inner.set_notification_handler(recording_handler)

    async def close(self) -> None:
        try:
            await self._inner.close()
        except Exception as e:
            self._instrumentation.record_error(Direction.OUTBOUND, e, method="close")
            raise
        self._instrumentation.record_event(f"close {self.kind.value}")
