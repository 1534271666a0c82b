"""
Services: orchestration de la connexion MCP et composition des dépendances.
"""

from .connection import ConnectionService
from .factory import create_connection_service
from .signals import install_signal_handlers, remove_signal_handlers

__all__ = [
    "ConnectionService",
    "create_connection_service",
    "install_signal_handlers",
    "remove_signal_handlers",
]
