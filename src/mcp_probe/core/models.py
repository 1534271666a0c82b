"""
Modèles de données pour MCP Probe.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .constants import DEFAULT_CONNECT_TIMEOUT, DEBUG_LINE_PREVIEW
from .exceptions import TransportError


# ============================================================================
# CONFIGURATION DE CONNEXION
# ============================================================================

class TransportKind(str, Enum):
    STDIO = "stdio"
    SSE = "sse"
    HTTP = "http"

    @classmethod
    def parse(cls, value: Any) -> "TransportKind":
        """Accepte aussi les alias `event-stream` et `streamable-http`."""
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        aliases = {
            "event-stream": cls.SSE,
            "eventstream": cls.SSE,
            "streamable-http": cls.HTTP,
            "streamable_http": cls.HTTP,
        }
        if raw in aliases:
            return aliases[raw]
        return cls(raw)


def _freeze_mapping(value: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType({str(k): str(v) for k, v in (value or {}).items()})


@dataclass(frozen=True)
class ConnectionConfig:
    """Configuration d'une connexion, immuable une fois passée à connect()."""

    transport: TransportKind
    command: str = ""
    args: Tuple[str, ...] = ()
    url: str = ""
    timeout: float = DEFAULT_CONNECT_TIMEOUT
    env: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        try:
            kind = TransportKind.parse(self.transport)
        except ValueError:
            raise TransportError(
                f"Type de transport non supporté: {self.transport!r}", transport=str(self.transport)
            ) from None
        object.__setattr__(self, "transport", kind)
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        object.__setattr__(self, "timeout", float(self.timeout))
        object.__setattr__(self, "env", _freeze_mapping(self.env))
        object.__setattr__(self, "headers", _freeze_mapping(self.headers))

    @classmethod
    def stdio(cls, command: str, *args: str, timeout: float = DEFAULT_CONNECT_TIMEOUT, env=None) -> "ConnectionConfig":
        return cls(transport=TransportKind.STDIO, command=command, args=args, timeout=timeout, env=env or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionConfig":
        return cls(
            transport=data.get("transport", "stdio"),
            command=data.get("command", "") or "",
            args=tuple(data.get("args", ()) or ()),
            url=data.get("url", "") or "",
            timeout=data.get("timeout", DEFAULT_CONNECT_TIMEOUT),
            env=data.get("env") or {},
            headers=data.get("headers") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transport": self.transport.value,
            "command": self.command,
            "args": list(self.args),
            "url": self.url,
            "timeout": self.timeout,
        }


# ============================================================================
# PROCESSUS
# ============================================================================

class ProcessState(str, Enum):
    UNSPAWNED = "unspawned"
    RUNNING = "running"
    TERMINATING = "terminating"
    EXITED = "exited"


@dataclass(frozen=True)
class ProcessHandle:
    """Jeton opaque vers un processus suivi par le superviseur."""

    serial: int
    pid: int
    command: str
    args: Tuple[str, ...] = ()


# ============================================================================
# INSTRUMENTATION
# ============================================================================

class Direction(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"

    @property
    def arrow(self) -> str:
        return "→" if self is Direction.OUTBOUND else "←"


class MessageKind(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    TRANSPORT_EVENT = "transport_event"
    ERROR = "error"


@dataclass(frozen=True)
class RingBufferEntry:
    timestamp: datetime
    direction: Direction
    kind: MessageKind
    payload: str
    method: Optional[str] = None
    message_id: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "timestamp": self.timestamp.isoformat(timespec="milliseconds"),
            "direction": self.direction.value,
            "kind": self.kind.value,
            "payload": self.payload,
        }
        if self.method is not None:
            data["method"] = self.method
        if self.message_id is not None:
            data["id"] = self.message_id
        return data

    def format_line(self, preview: int = DEBUG_LINE_PREVIEW) -> str:
        """Ligne lisible: `[HH:MM:SS.mmm] → REQUEST | {...}`."""
        stamp = self.timestamp.astimezone().strftime("%H:%M:%S.%f")[:-3]
        payload = self.payload
        if len(payload) > preview:
            payload = payload[: preview - 3] + "..."
        return f"[{stamp}] {self.direction.arrow} {self.kind.value.upper()} | {payload}"


# ============================================================================
# DIAGNOSTIC
# ============================================================================

class StartupCategory(str, Enum):
    MISSING_ENV_VAR = "missing_env_var"
    USAGE_ERROR = "usage_error"
    PACKAGE_NOT_FOUND = "package_not_found"
    COMMAND_NOT_FOUND = "command_not_found"
    GENERIC = "generic"
    NONE = "none"


@dataclass(frozen=True)
class ErrorClassification:
    category: StartupCategory
    evidence: str = ""
    remediation: str = ""

    @property
    def is_startup_failure(self) -> bool:
        return self.category is not StartupCategory.NONE

    @classmethod
    def none(cls) -> "ErrorClassification":
        return cls(category=StartupCategory.NONE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "evidence": self.evidence,
            "remediation": self.remediation,
        }


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"


@dataclass
class ErrorStatistics:
    total_errors: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    recoverable_errors: int = 0
    last_error: Optional[Dict[str, Any]] = None
    recent_errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "by_category": dict(self.by_category),
            "recoverable_errors": self.recoverable_errors,
            "last_error": self.last_error,
            "recent_errors": list(self.recent_errors),
            "started_at": self.started_at.isoformat(),
        }


# ============================================================================
# RÉSULTATS MCP
# ============================================================================

@dataclass
class ServerInfo:
    name: str = ""
    version: str = ""
    protocol_version: str = ""
    capabilities: Dict[str, Any] = field(default_factory=dict)
    instructions: Optional[str] = None

    @classmethod
    def from_initialize_result(cls, result: Dict[str, Any]) -> "ServerInfo":
        info = result.get("serverInfo") or {}
        return cls(
            name=str(info.get("name", "")),
            version=str(info.get("version", "")),
            protocol_version=str(result.get("protocolVersion", "")),
            capabilities=dict(result.get("capabilities") or {}),
            instructions=result.get("instructions"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "protocol_version": self.protocol_version,
            "capabilities": self.capabilities,
        }


@dataclass
class ConnectionHealth:
    connected: bool
    state: ConnectionState
    last_error: Optional[Dict[str, Any]] = None
    error_counts: Dict[str, int] = field(default_factory=dict)
    server_info: Optional[ServerInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "state": self.state.value,
            "last_error": self.last_error,
            "error_counts": dict(self.error_counts),
            "server_info": self.server_info.to_dict() if self.server_info else None,
        }


@dataclass
class Tool:
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tool":
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            input_schema=dict(data.get("inputSchema") or {}),
        )

    @property
    def required(self) -> List[str]:
        return list(self.input_schema.get("required") or [])

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


@dataclass
class Resource:
    uri: str
    name: str = ""
    description: str = ""
    mime_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Resource":
        return cls(
            uri=str(data.get("uri", "")),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            mime_type=data.get("mimeType"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"uri": self.uri, "name": self.name, "description": self.description, "mimeType": self.mime_type}


@dataclass
class ResourceContents:
    uri: str
    mime_type: Optional[str] = None
    text: Optional[str] = None
    blob: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceContents":
        return cls(
            uri=str(data.get("uri", "")),
            mime_type=data.get("mimeType"),
            text=data.get("text"),
            blob=data.get("blob"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"uri": self.uri, "mimeType": self.mime_type}
        if self.text is not None:
            data["text"] = self.text
        if self.blob is not None:
            data["blob"] = self.blob
        return data


@dataclass
class PromptArgument:
    name: str
    description: str = ""
    required: bool = False


@dataclass
class Prompt:
    name: str
    description: str = ""
    arguments: List[PromptArgument] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prompt":
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            arguments=[
                PromptArgument(
                    name=str(arg.get("name", "")),
                    description=str(arg.get("description") or ""),
                    required=bool(arg.get("required", False)),
                )
                for arg in data.get("arguments") or []
                if isinstance(arg, dict)
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [
                {"name": a.name, "description": a.description, "required": a.required}
                for a in self.arguments
            ],
        }


@dataclass
class Content:
    type: str
    text: Optional[str] = None
    data: Optional[str] = None
    mime_type: Optional[str] = None
    resource: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Content":
        return cls(
            type=str(data.get("type", "text")),
            text=data.get("text"),
            data=data.get("data"),
            mime_type=data.get("mimeType"),
            resource=data.get("resource"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        if self.text is not None:
            out["text"] = self.text
        if self.data is not None:
            out["data"] = self.data
        if self.mime_type is not None:
            out["mimeType"] = self.mime_type
        if self.resource is not None:
            out["resource"] = self.resource
        return out


@dataclass
class CallToolResult:
    content: List[Content] = field(default_factory=list)
    is_error: bool = False
    structured_content: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallToolResult":
        return cls(
            content=[Content.from_dict(c) for c in data.get("content") or [] if isinstance(c, dict)],
            is_error=bool(data.get("isError", False)),
            structured_content=data.get("structuredContent"),
        )

    @property
    def text(self) -> str:
        return "\n".join(c.text for c in self.content if c.text is not None)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "content": [c.to_dict() for c in self.content],
            "isError": self.is_error,
        }
        if self.structured_content is not None:
            data["structuredContent"] = self.structured_content
        return data


@dataclass
class PromptMessage:
    role: str
    content: Content

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptMessage":
        return cls(role=str(data.get("role", "")), content=Content.from_dict(data.get("content") or {}))


@dataclass
class GetPromptResult:
    description: str = ""
    messages: List[PromptMessage] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GetPromptResult":
        return cls(
            description=str(data.get("description") or ""),
            messages=[PromptMessage.from_dict(m) for m in data.get("messages") or [] if isinstance(m, dict)],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "messages": [{"role": m.role, "content": m.content.to_dict()} for m in self.messages],
        }
