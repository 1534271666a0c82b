"""mcp_probe.features.process.controller

Stratégie de contrôle des processus par plateforme.

Le superviseur ne manipule jamais directement les primitives OS: il passe par
un `ProcessController` choisi une seule fois par `select_controller()`.
"""
from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence, Tuple


class ProcessController(ABC):
    """Primitives OS: lancement en groupe, arrêt gracieux, kill forcé, libération."""

    name: str = "abstract"

    @abstractmethod
    async def spawn(
        self,
        command: str,
        args: Sequence[str],
        *,
        env: Optional[Mapping[str, str]],
        cwd: Optional[str],
        limit: int,
    ) -> Tuple[asyncio.subprocess.Process, Any]:
        """Lance le processus rattaché à un groupe; retourne (process, handle de terminaison)."""

    @abstractmethod
    def graceful_stop(self, proc: asyncio.subprocess.Process, group: Any) -> None:
        """Demande d'arrêt envoyée à tout le groupe."""

    @abstractmethod
    def force_kill(self, proc: asyncio.subprocess.Process, group: Any) -> None:
        """Kill forcé de tout le groupe."""

    def release(self, group: Any) -> None:
        """Libère le handle de terminaison une fois la sortie observée."""

    @staticmethod
    def poll(proc: asyncio.subprocess.Process) -> Optional[int]:
        """Code de sortie si déjà collecté, sans bloquer."""
        return proc.returncode


def select_controller() -> ProcessController:
    """Unique point de sélection de la stratégie de plateforme."""
    if os.name == "nt":
        from .windows import WindowsProcessController

        return WindowsProcessController()

    from .posix import PosixProcessController

    return PosixProcessController()
