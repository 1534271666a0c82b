"""
Cœur métier de MCP Probe.
Modules indépendants sans dépendances externes au package.
"""

from .exceptions import (
    McpProbeError,
    ConfigurationError,
    ValidationError,
    ProcessSpawnError,
    StartupFailureError,
    TransportError,
    ProtocolError,
    ProtocolTimeoutError,
    NotConnectedError,
    ConnectionStateError,
)
from .models import (
    TransportKind,
    ConnectionConfig,
    ProcessState,
    ProcessHandle,
    Direction,
    MessageKind,
    RingBufferEntry,
    StartupCategory,
    ErrorClassification,
    ConnectionState,
    ConnectionHealth,
    ErrorStatistics,
    ServerInfo,
    Tool,
    Resource,
    ResourceContents,
    Prompt,
    PromptArgument,
    Content,
    CallToolResult,
    PromptMessage,
    GetPromptResult,
)

__all__ = [
    # Exceptions
    "McpProbeError",
    "ConfigurationError",
    "ValidationError",
    "ProcessSpawnError",
    "StartupFailureError",
    "TransportError",
    "ProtocolError",
    "ProtocolTimeoutError",
    "NotConnectedError",
    "ConnectionStateError",
    # Models
    "TransportKind",
    "ConnectionConfig",
    "ProcessState",
    "ProcessHandle",
    "Direction",
    "MessageKind",
    "RingBufferEntry",
    "StartupCategory",
    "ErrorClassification",
    "ConnectionState",
    "ConnectionHealth",
    "ErrorStatistics",
    "ServerInfo",
    "Tool",
    "Resource",
    "ResourceContents",
    "Prompt",
    "PromptArgument",
    "Content",
    "CallToolResult",
    "PromptMessage",
    "GetPromptResult",
]
