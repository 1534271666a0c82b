"""
Contrôle des processus Windows: job object + groupe de processus console.

L'arrêt gracieux envoie CTRL_BREAK au groupe; le kill forcé termine le job
entier, ce qui couvre tous les descendants.
"""
from __future__ import annotations

import asyncio
import ctypes
import logging
import signal
import subprocess
from typing import Mapping, Optional, Sequence

from .controller import ProcessController

logger = logging.getLogger(__name__)

_JOB_OBJECT_EXTENDED_LIMIT_INFORMATION = 9
_JOB_OBJECT_LIMIT_KILL_ON_JOB_CLOSE = 0x2000
_PROCESS_TERMINATE = 0x0001
_PROCESS_SET_QUOTA = 0x0100

_DWORD = ctypes.c_ulong


class _IoCounters(ctypes.Structure):
    _fields_ = [
        ("ReadOperationCount", ctypes.c_ulonglong),
        ("WriteOperationCount", ctypes.c_ulonglong),
        ("OtherOperationCount", ctypes.c_ulonglong),
        ("ReadTransferCount", ctypes.c_ulonglong),
        ("WriteTransferCount", ctypes.c_ulonglong),
        ("OtherTransferCount", ctypes.c_ulonglong),
    ]


class _BasicLimitInformation(ctypes.Structure):
    _fields_ = [
        ("PerProcessUserTimeLimit", ctypes.c_int64),
        ("PerJobUserTimeLimit", ctypes.c_int64),
        ("LimitFlags", _DWORD),
        ("MinimumWorkingSetSize", ctypes.c_size_t),
        ("MaximumWorkingSetSize", ctypes.c_size_t),
        ("ActiveProcessLimit", _DWORD),
        ("Affinity", ctypes.c_size_t),
        ("PriorityClass", _DWORD),
        ("SchedulingClass", _DWORD),
    ]


class _ExtendedLimitInformation(ctypes.Structure):
    _fields_ = [
        ("BasicLimitInformation", _BasicLimitInformation),
        ("IoInfo", _IoCounters),
        ("ProcessMemoryLimit", ctypes.c_size_t),
        ("JobMemoryLimit", ctypes.c_size_t),
        ("PeakProcessMemoryUsed", ctypes.c_size_t),
        ("PeakJobMemoryUsed", ctypes.c_size_t),
    ]


class WindowsProcessController(ProcessController):
    name = "windows"

    def __init__(self):
        self._kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
        self._kernel32.CreateJobObjectW.restype = ctypes.c_void_p
        self._kernel32.OpenProcess.restype = ctypes.c_void_p

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
            creationflags=subprocess.CREATE_NEW_PROCESS_GROUP,
        )
        return proc, self._create_job(proc.pid)

    def _create_job(self, pid: int) -> Optional[int]:
        k32 = self._kernel32
        job = k32.CreateJobObjectW(None, None)
        if not job:
            logger.warning(f"⚠️ CreateJobObject a échoué (err={ctypes.get_last_error()}), pas de job pour {pid}")
            return None

        info = _ExtendedLimitInformation()
        info.BasicLimitInformation.LimitFlags = _JOB_OBJECT_LIMIT_KILL_ON_JOB_CLOSE
        k32.SetInformationJobObject(
            ctypes.c_void_p(job),
            _JOB_OBJECT_EXTENDED_LIMIT_INFORMATION,
            ctypes.byref(info),
            ctypes.sizeof(info),
        )

        process = k32.OpenProcess(_PROCESS_SET_QUOTA | _PROCESS_TERMINATE, False, pid)
        if not process:
            logger.warning(f"⚠️ OpenProcess({pid}) a échoué (err={ctypes.get_last_error()})")
            k32.CloseHandle(ctypes.c_void_p(job))
            return None
        try:
            if not k32.AssignProcessToJobObject(ctypes.c_void_p(job), ctypes.c_void_p(process)):
                logger.warning(f"⚠️ AssignProcessToJobObject({pid}) a échoué (err={ctypes.get_last_error()})")
                k32.CloseHandle(ctypes.c_void_p(job))
                return None
        finally:
            k32.CloseHandle(ctypes.c_void_p(process))
        return job

    def graceful_stop(self, proc, group) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.send_signal(signal.CTRL_BREAK_EVENT)
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK ignoré pour {proc.pid}: {e}")

    def force_kill(self, proc, group) -> None:
        if group and self._kernel32.TerminateJobObject(ctypes.c_void_p(group), 1):
            return
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                return

    def release(self, group) -> None:
        if group:
            self._kernel32.CloseHandle(ctypes.c_void_p(group))
