"""mcp_probe.features.process.supervisor

Supervision des processus enfants (serveurs MCP stdio).

Cycle de vie par processus: unspawned → running → terminating → exited.
- `terminating` n'est atteint que par une demande explicite de terminaison.
- Un processus n'est retiré du suivi qu'une fois sa sortie observée.
- Le reaper (tâche de fond) ne touche jamais un processus dont la terminaison
  explicite est en cours: terminate() a toujours la priorité.

Les entrées internes (`_ManagedProcess`) ne sortent jamais de ce module;
les appelants ne manipulent que des `ProcessHandle` opaques.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import os
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ...core.constants import (
    RECENT_EXITS_MAX,
    REAP_INTERVAL,
    STDIO_STREAM_LIMIT_DEFAULT,
    STDIO_STREAM_LIMIT_ENV,
    STDIO_STREAM_LIMIT_MAX,
    STDIO_STREAM_LIMIT_MIN,
    TERMINATE_GRACE_PERIOD,
    TERMINATE_KILL_TIMEOUT,
)
from ...core.exceptions import ProcessSpawnError
from ...core.models import ProcessHandle, ProcessState
from .controller import ProcessController, select_controller

logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[ProcessState, frozenset] = {
    ProcessState.UNSPAWNED: frozenset({ProcessState.RUNNING}),
    # running → exited: sortie naturelle observée par le reaper ou wait()
    ProcessState.RUNNING: frozenset({ProcessState.TERMINATING, ProcessState.EXITED}),
    ProcessState.TERMINATING: frozenset({ProcessState.EXITED}),
    ProcessState.EXITED: frozenset(),
}


def stdio_stream_limit_bytes() -> int:
    """Taille max (en bytes) d'une ligne lue sur stdout/stderr d'un serveur stdio.

    asyncio limite readline() à 64 KiB par défaut; certains serveurs renvoient
    des réponses JSON-RPC bien plus volumineuses sur une seule ligne.
    Surcharge possible via MCP_PROBE_STDIO_STREAM_LIMIT.
    """
    raw = os.getenv(STDIO_STREAM_LIMIT_ENV)
    if raw is None:
        return STDIO_STREAM_LIMIT_DEFAULT
    try:
        configured = int(raw.strip())
    except ValueError:
        return STDIO_STREAM_LIMIT_DEFAULT
    if configured <= 0:
        return STDIO_STREAM_LIMIT_DEFAULT
    return min(STDIO_STREAM_LIMIT_MAX, max(STDIO_STREAM_LIMIT_MIN, configured))


@dataclass(frozen=True)
class ProcessPipes:
    stdin: asyncio.StreamWriter
    stdout: asyncio.StreamReader
    stderr: asyncio.StreamReader


class _ManagedProcess:
    __slots__ = ("handle", "proc", "group", "state", "terminate_task")

    def __init__(self, handle: ProcessHandle, proc: asyncio.subprocess.Process, group: Any):
        self.handle = handle
        self.proc = proc
        self.group = group
        self.state = ProcessState.UNSPAWNED
        self.terminate_task: Optional[asyncio.Future] = None

    def move_to(self, target: ProcessState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Transition de processus interdite: {self.state.value} → {target.value} (pid={self.handle.pid})"
            )
        self.state = target

    @property
    def terminating(self) -> bool:
        return self.terminate_task is not None and not self.terminate_task.done()


class ProcessSupervisor:
    """Lance, suit, termine (gracieux puis forcé) et collecte les processus enfants."""

    def __init__(
        self,
        controller: Optional[ProcessController] = None,
        *,
        grace_period: float = TERMINATE_GRACE_PERIOD,
        kill_timeout: float = TERMINATE_KILL_TIMEOUT,
        reap_interval: float = REAP_INTERVAL,
        stream_limit: Optional[int] = None,
    ):
        self._controller = controller or select_controller()
        self._grace_period = grace_period
        self._kill_timeout = kill_timeout
        self._reap_interval = reap_interval
        self._stream_limit = stream_limit or stdio_stream_limit_bytes()

        self._lock = threading.Lock()
        self._processes: Dict[int, _ManagedProcess] = {}
        self._recent_exits: "OrderedDict[int, Optional[int]]" = OrderedDict()
        self._serials = itertools.count(1)
        self._last_serial = 0
        self._reaper_task: Optional[asyncio.Task] = None

    @property
    def controller(self) -> ProcessController:
        return self._controller

    # ------------------------------------------------------------------
    # Reaper
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Démarre le reaper (idempotent). spawn() l'appelle aussi."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.get_running_loop().create_task(
                self._reap_loop(), name="mcp-probe-reaper"
            )

    async def _reap_loop(self) -> None:
        while True:
            self.reap()
            await asyncio.sleep(self._reap_interval)

    def reap(self) -> List[ProcessHandle]:
        """Une passe non bloquante: retire du suivi les processus déjà sortis."""
        with self._lock:
            candidates = [
                managed
                for managed in self._processes.values()
                if not managed.terminating and self._controller.poll(managed.proc) is not None
            ]
        reaped = []
        for managed in candidates:
            if self._finalize(managed):
                logger.debug(f"🧹 Processus {managed.handle.pid} collecté (code={managed.proc.returncode})")
                reaped.append(managed.handle)
        return reaped

    # ------------------------------------------------------------------
    # Spawn
    # ------------------------------------------------------------------

    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ProcessHandle:
        """
        Lance un processus enfant rattaché à un groupe et l'enregistre.

        Raises:
            ProcessSpawnError: exécutable introuvable ou impossible à lancer
        """
        await self.start()

        child_env = {**os.environ, **env} if env else None
        try:
            proc, group = await self._controller.spawn(
                command, list(args), env=child_env, cwd=cwd, limit=self._stream_limit
            )
        except FileNotFoundError as e:
            raise ProcessSpawnError(
                f"Exécutable introuvable: {command}", command=command, os_error=str(e)
            ) from e
        except OSError as e:
            raise ProcessSpawnError(
                f"Impossible de lancer {command}: {e.strerror or e}", command=command, os_error=str(e)
            ) from e

        serial = next(self._serials)
        handle = ProcessHandle(serial=serial, pid=proc.pid, command=command, args=tuple(args))
        managed = _ManagedProcess(handle, proc, group)
        managed.move_to(ProcessState.RUNNING)
        with self._lock:
            self._processes[serial] = managed
            self._last_serial = serial

        logger.info(f"🚀 Processus lancé: {command} (pid={proc.pid}, controller={self._controller.name})")
        return handle

    # ------------------------------------------------------------------
    # Consultation
    # ------------------------------------------------------------------

    def _get(self, handle: ProcessHandle) -> Optional[_ManagedProcess]:
        with self._lock:
            return self._processes.get(handle.serial)

    def pipes(self, handle: ProcessHandle) -> ProcessPipes:
        managed = self._get(handle)
        if managed is None:
            raise KeyError(f"Processus non suivi: pid={handle.pid}")
        proc = managed.proc
        return ProcessPipes(stdin=proc.stdin, stdout=proc.stdout, stderr=proc.stderr)

    def state(self, handle: ProcessHandle) -> ProcessState:
        managed = self._get(handle)
        if managed is not None:
            return managed.state
        with self._lock:
            known = handle.serial <= self._last_serial
        return ProcessState.EXITED if known else ProcessState.UNSPAWNED

    def is_running(self, handle: ProcessHandle) -> bool:
        managed = self._get(handle)
        return (
            managed is not None
            and managed.state is ProcessState.RUNNING
            and managed.proc.returncode is None
        )

    def exit_code(self, handle: ProcessHandle) -> Optional[int]:
        managed = self._get(handle)
        if managed is not None:
            return managed.proc.returncode
        with self._lock:
            return self._recent_exits.get(handle.serial)

    def tracked(self) -> List[ProcessHandle]:
        with self._lock:
            return [managed.handle for managed in self._processes.values()]

    @property
    def tracked_count(self) -> int:
        with self._lock:
            return len(self._processes)

    async def wait(self, handle: ProcessHandle, timeout: Optional[float] = None) -> Optional[int]:
        """Attend la sortie du processus (borné); None si toujours vivant."""
        managed = self._get(handle)
        if managed is None:
            return self.exit_code(handle)
        try:
            code = await asyncio.wait_for(asyncio.shield(managed.proc.wait()), timeout)
        except asyncio.TimeoutError:
            return None
        if not managed.terminating:
            self._finalize(managed)
        return code

    # ------------------------------------------------------------------
    # Terminaison
    # ------------------------------------------------------------------

    async def terminate(self, handle: ProcessHandle) -> Optional[int]:
        """
        Arrêt gracieux du groupe, puis kill forcé, puis abandon propre.

        Les appels concurrents sur un même processus partagent la même
        terminaison. Retourne le code de sortie, ou None si l'OS n'a jamais
        confirmé la sortie (le reaper finalisera plus tard).
        """
        with self._lock:
            managed = self._processes.get(handle.serial)
            if managed is None:
                return self._recent_exits.get(handle.serial)
            task = managed.terminate_task
            if task is None or (task.done() and managed.state is ProcessState.TERMINATING):
                if managed.state is ProcessState.RUNNING:
                    managed.move_to(ProcessState.TERMINATING)
                task = asyncio.ensure_future(self._terminate(managed))
                managed.terminate_task = task

        return await asyncio.shield(task)

    async def _terminate(self, managed: _ManagedProcess) -> Optional[int]:
        proc = managed.proc
        pid = managed.handle.pid

        if proc.returncode is None:
            logger.info(f"🛑 Arrêt gracieux du groupe du processus {pid}")
            self._controller.graceful_stop(proc, managed.group)
            try:
                await asyncio.wait_for(proc.wait(), self._grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    f"⚠️ Processus {pid} toujours vivant après {self._grace_period}s, kill forcé du groupe"
                )
                self._controller.force_kill(proc, managed.group)
                try:
                    await asyncio.wait_for(proc.wait(), self._kill_timeout)
                except asyncio.TimeoutError:
                    logger.error(
                        f"❌ Sortie du processus {pid} non confirmée après kill forcé, abandon "
                        f"(le reaper le collectera)"
                    )
                    return None

        self._finalize(managed)
        logger.info(f"✅ Processus {pid} terminé (code={proc.returncode})")
        return proc.returncode

    async def kill_all(self) -> None:
        """Termine tous les processus suivis en parallèle et attend la fin de chacun."""
        handles = self.tracked()
        if not handles:
            return
        logger.info(f"🛑 Terminaison de {len(handles)} processus suivis")
        results = await asyncio.gather(*(self.terminate(h) for h in handles), return_exceptions=True)
        for handle, result in zip(handles, results):
            if isinstance(result, BaseException):
                logger.error(f"❌ Échec de terminaison du processus {handle.pid}: {result!r}")

    async def close(self) -> None:
        """Termine tout puis arrête le reaper."""
        await self.kill_all()
        task, self._reaper_task = self._reaper_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        # Dernière passe pour les processus abandonnés qui seraient sortis entre-temps
        self.reap()

    def _finalize(self, managed: _ManagedProcess) -> bool:
        with self._lock:
            if self._processes.get(managed.handle.serial) is not managed:
                return False
            managed.move_to(ProcessState.EXITED)
            del self._processes[managed.handle.serial]
            self._recent_exits[managed.handle.serial] = managed.proc.returncode
            while len(self._recent_exits) > RECENT_EXITS_MAX:
                self._recent_exits.popitem(last=False)
        self._controller.release(managed.group)
        return True
