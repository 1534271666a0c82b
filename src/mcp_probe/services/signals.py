"""
Arrêt propre sur SIGINT/SIGTERM: le signal déclenche `request_disconnect()`.
"""
import asyncio
import logging
import signal
from typing import List, Optional

from .connection import ConnectionService

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if sig is not None
)


def install_signal_handlers(
    service: ConnectionService, loop: Optional[asyncio.AbstractEventLoop] = None
) -> List[int]:
    """
    Installe les handlers d'arrêt; retourne les signaux effectivement pris en charge.

    Boucle asyncio POSIX: `loop.add_signal_handler`. Ailleurs (Windows):
    `signal.signal`, qui s'exécute dans le thread principal et délègue donc
    au chemin thread-safe du service.
    """
    loop = loop or asyncio.get_running_loop()
    installed: List[int] = []
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, service.request_disconnect)
        except (NotImplementedError, RuntimeError):
            try:
                signal.signal(sig, lambda signum, frame: service.request_disconnect())
            except ValueError:
                # Pas dans le thread principal
                logger.debug(f"Handler non installé pour {sig}")
                continue
        installed.append(sig)
    return installed


def remove_signal_handlers(loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
    loop = loop or asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.remove_signal_handler(sig)
        except (NotImplementedError, RuntimeError):
            try:
                signal.signal(sig, signal.SIG_DFL)
            except ValueError:
                continue
