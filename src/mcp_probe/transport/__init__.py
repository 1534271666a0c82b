"""
Transports MCP (stdio, sse, http) et session JSON-RPC.
"""

from .base import Transport, JsonRpcTransport, NotificationHandler
from .stdio import StdioTransport
from .sse import SseTransport
from .http import HttpTransport
from .factory import TransportFactory, ConnectionStrategy
from .session import McpSession, prepare_tool_arguments

__all__ = [
    "Transport",
    "JsonRpcTransport",
    "NotificationHandler",
    "StdioTransport",
    "SseTransport",
    "HttpTransport",
    "TransportFactory",
    "ConnectionStrategy",
    "McpSession",
    "prepare_tool_arguments",
]
