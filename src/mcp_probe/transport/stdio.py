"""mcp_probe.transport.stdio

Transport stdio: un message JSON-RPC par ligne sur stdin/stdout du processus.

Important:
- Les lignes stdout qui ne sont pas du JSON-RPC (bannières, logs) ne sont pas
  des messages: elles sont journalisées et, tant qu'aucun message valide n'a
  été vu, capturées comme "sortie précoce" avec stderr.
- Cette sortie précoce alimente la classification des échecs de démarrage.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, Optional

from ..core.constants import EARLY_OUTPUT_MAX_CHARS
from ..core.exceptions import ProtocolError
from ..core.models import ProcessHandle, TransportKind
from ..features.process.supervisor import ProcessPipes
from . import jsonrpc
from .base import JsonRpcTransport
from .jsonrpc import JsonRpcMessage

logger = logging.getLogger(__name__)


class EarlyOutput:
    """Tampon borné (en caractères) des lignes reçues avant le premier message valide."""

    def __init__(self, max_chars: int = EARLY_OUTPUT_MAX_CHARS):
        self._max_chars = max(1, max_chars)
        self._lines: Deque[str] = deque()
        self._size = 0
        self.truncated = False

    def append(self, line: str) -> None:
        self._lines.append(line)
        self._size += len(line)
        while self._size > self._max_chars and len(self._lines) > 1:
            dropped = self._lines.popleft()
            self._size -= len(dropped)
            self.truncated = True

    def text(self) -> str:
        return "\n".join(self._lines)

    def __len__(self) -> int:
        return len(self._lines)


class StdioTransport(JsonRpcTransport):
    kind = TransportKind.STDIO

    def __init__(
        self,
        pipes: ProcessPipes,
        *,
        process: Optional[ProcessHandle] = None,
        early_output_max_chars: int = EARLY_OUTPUT_MAX_CHARS,
    ):
        super().__init__()
        self._pipes = pipes
        self._process = process
        self._early = EarlyOutput(early_output_max_chars)
        self._traffic_seen = False
        self._stdout_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._eof_error: Optional[ProtocolError] = None

    @property
    def process(self) -> Optional[ProcessHandle]:
        return self._process

    @property
    def protocol_traffic_seen(self) -> bool:
        return self._traffic_seen

    def early_output(self) -> str:
        return self._early.text()

    async def start(self) -> None:
        self._ensure_open()
        if self._stdout_task is not None:
            return
        loop = asyncio.get_running_loop()
        self._stdout_task = loop.create_task(self._read_stdout(), name="mcp-stdio-stdout")
        self._stderr_task = loop.create_task(self._read_stderr(), name="mcp-stdio-stderr")
        pid = self._process.pid if self._process else "?"
        logger.debug(f"📡 Transport stdio démarré (pid={pid})")

    async def _exchange(
        self, message: JsonRpcMessage, future: asyncio.Future, timeout: Optional[float]
    ) -> JsonRpcMessage:
        # stdout déjà fermé: la réponse ne pourra jamais arriver
        if self._eof_error is not None:
            raise self._eof_error
        await self._write(message, timeout=timeout)
        return await future

    async def _write(self, message: JsonRpcMessage, timeout: Optional[float] = None) -> None:
        self._ensure_open()
        data = (jsonrpc.encode(message) + "\n").encode("utf-8")
        stdin = self._pipes.stdin
        async with self._write_lock:
            try:
                stdin.write(data)
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ProtocolError(
                    "Le processus serveur a fermé son entrée standard",
                    method=message.get("method"),
                    evidence=self._early.text()[-300:] or None,
                ) from e

    async def _read_stdout(self) -> None:
        stdout = self._pipes.stdout
        reason = "Le serveur a fermé sa sortie standard (EOF) avant de répondre"
        try:
            while True:
                try:
                    raw = await stdout.readline()
                except ValueError as e:
                    # LimitOverrunError convertie par readline()
                    reason = f"Ligne stdout trop longue pour le tampon de lecture: {e}"
                    logger.error(f"❌ {reason}")
                    break
                if not raw:
                    break
                obj = jsonrpc.try_parse_line(raw)
                if obj is not None and jsonrpc.is_jsonrpc_message(obj):
                    if not self._traffic_seen:
                        logger.debug("Premier message JSON-RPC reçu sur stdout")
                    self._traffic_seen = True
                    await self._dispatch(obj)
                    continue
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line.strip():
                    continue
                logger.debug(f"[stdout non JSON-RPC] {line[:200]}")
                if not self._traffic_seen:
                    self._early.append(line)
        finally:
            self._eof_error = ProtocolError(reason, evidence=self._early.text()[-300:] or None)
            self._fail_pending(self._eof_error)

    async def _read_stderr(self) -> None:
        stderr = self._pipes.stderr
        while True:
            try:
                raw = await stderr.readline()
            except ValueError:
                continue
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line.strip():
                continue
            logger.debug(f"[stderr] {line[:200]}")
            if not self._traffic_seen:
                self._early.append(line)

    async def wait_output_closed(self, timeout: float) -> bool:
        """Attend (borné) la fin des lecteurs stdout/stderr; True si les deux sont terminés."""
        tasks = [t for t in (self._stdout_task, self._stderr_task) if t is not None]
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        stdin = self._pipes.stdin
        if not stdin.is_closing():
            stdin.close()
        try:
            await asyncio.wait_for(stdin.wait_closed(), 1.0)
        except (BrokenPipeError, ConnectionResetError, asyncio.TimeoutError):
            pass

        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._stdout_task, self._stderr_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._cancel_background()
        self._fail_pending(ProtocolError("Transport stdio fermé"))
        logger.debug("Transport stdio fermé")
