"""
MCP Probe: client de diagnostic pour serveurs MCP (stdio, sse, http).

Usage minimal:

    service = create_connection_service()
    await service.connect(ConnectionConfig.stdio("npx", "-y", "server-x"))
    tools = await service.list_tools()
    await service.close()
"""

__version__ = "1.0.0"

from .core import (
    ConnectionConfig,
    ConnectionState,
    McpProbeError,
    StartupFailureError,
    TransportKind,
)
from .services import ConnectionService, create_connection_service

__all__ = [
    "__version__",
    "ConnectionConfig",
    "ConnectionState",
    "McpProbeError",
    "StartupFailureError",
    "TransportKind",
    "ConnectionService",
    "create_connection_service",
]
