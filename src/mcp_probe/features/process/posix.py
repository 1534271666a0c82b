"""
Contrôle des processus POSIX: nouvelle session, signaux au groupe entier.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Mapping, Optional, Sequence

from .controller import ProcessController

logger = logging.getLogger(__name__)


class PosixProcessController(ProcessController):
    name = "posix"

    async def spawn(
        self,
        command: str,
        args: Sequence[str],
        *,
        env: Optional[Mapping[str, str]],
        cwd: Optional[str],
        limit: int,
    ):
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
            cwd=cwd,
            limit=limit,
            start_new_session=True,
        )
        # Leader de session: pgid == pid
        return proc, proc.pid

    def graceful_stop(self, proc, group) -> None:
        self._signal_group(proc, group, signal.SIGTERM)

    def force_kill(self, proc, group) -> None:
        self._signal_group(proc, group, signal.SIGKILL)

    @staticmethod
    def _signal_group(proc, group: int, sig: int) -> None:
        try:
            os.killpg(group, sig)
        except ProcessLookupError:
            # Groupe déjà vide
            return
        except PermissionError as e:
            logger.warning(f"⚠️ killpg({group}, {sig}) refusé: {e}, repli sur le processus seul")
            if proc.returncode is None:
                proc.send_signal(sig)
