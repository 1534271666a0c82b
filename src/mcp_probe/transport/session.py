"""mcp_probe.transport.session

Session MCP au-dessus d'un `Transport`: handshake puis opérations.

Handshake: requête `initialize` puis notification `notifications/initialized`.
Les erreurs JSON-RPC renvoyées par le serveur deviennent des `ProtocolError`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from ..core.constants import CLIENT_NAME, CLIENT_VERSION, DEFAULT_REQUEST_TIMEOUT, MCP_PROTOCOL_VERSION
from ..core.exceptions import ProtocolError
from ..core.models import (
    CallToolResult,
    GetPromptResult,
    Prompt,
    Resource,
    ResourceContents,
    ServerInfo,
    Tool,
)
from . import jsonrpc
from .base import Transport

logger = logging.getLogger(__name__)

# Garde-fou contre un serveur qui renverrait toujours le même curseur
_MAX_PAGES = 100


def _is_empty_array(value: Any, schema: Mapping[str, Any]) -> bool:
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return value in (None, "") and schema.get("type") == "array"


def prepare_tool_arguments(input_schema: Mapping[str, Any], arguments: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Normalise les arguments d'un appel d'outil.

    Tableau vide: envoyé `[]` si le champ est requis, omis s'il est optionnel.
    """
    required = set(input_schema.get("required") or [])
    properties = input_schema.get("properties") or {}
    prepared: Dict[str, Any] = {}
    for key, value in (arguments or {}).items():
        prop_schema = properties.get(key) or {}
        if _is_empty_array(value, prop_schema):
            if key in required:
                prepared[key] = []
            continue
        prepared[key] = value
    return prepared


class McpSession:
    """Client MCP minimal: handshake, outils, ressources, prompts, ping."""

    def __init__(self, transport: Transport, *, request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self._transport = transport
        self._request_timeout = request_timeout
        self._ids = jsonrpc.RequestIds()
        self._server_info: Optional[ServerInfo] = None
        self._tools: Dict[str, Tool] = {}

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def server_info(self) -> Optional[ServerInfo]:
        return self._server_info

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        message = jsonrpc.make_request(method, params, self._ids.next())
        response = await self._transport.send_request(message, timeout or self._request_timeout)
        error = response.get("error")
        if error is not None:
            if isinstance(error, dict):
                code = error.get("code")
                text = error.get("message") or "erreur inconnue"
            else:
                code, text = None, str(error)
            raise ProtocolError(f"{method}: {text}", rpc_code=code, method=method)
        result = response.get("result")
        if not isinstance(result, dict):
            raise ProtocolError(f"{method}: résultat JSON-RPC invalide", method=method, evidence=str(result)[:200])
        return result

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        await self._transport.send_notification(jsonrpc.make_notification(method, params))

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    async def initialize(self, timeout: Optional[float] = None) -> ServerInfo:
        result = await self.request(
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
            },
            timeout=timeout,
        )
        self._server_info = ServerInfo.from_initialize_result(result)
        await self.notify("notifications/initialized")
        logger.info(
            f"🤝 Handshake MCP terminé: {self._server_info.name or '?'} {self._server_info.version} "
            f"(protocole {self._server_info.protocol_version or '?'})"
        )
        return self._server_info

    async def ping(self, timeout: Optional[float] = None) -> None:
        await self.request("ping", None, timeout=timeout)

    # ------------------------------------------------------------------
    # Opérations
    # ------------------------------------------------------------------

    async def _paginate(self, method: str, key: str, timeout: Optional[float]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        for _ in range(_MAX_PAGES):
            params = {"cursor": cursor} if cursor else None
            result = await self.request(method, params, timeout=timeout)
            items.extend(item for item in result.get(key) or [] if isinstance(item, dict))
            cursor = result.get("nextCursor")
            if not cursor:
                return items
        logger.warning(f"⚠️ {method}: pagination interrompue après {_MAX_PAGES} pages")
        return items

    async def list_tools(self, timeout: Optional[float] = None) -> List[Tool]:
        tools = [Tool.from_dict(t) for t in await self._paginate("tools/list", "tools", timeout)]
        self._tools = {tool.name: tool for tool in tools}
        return tools

    async def call_tool(
        self, name: str, arguments: Optional[Mapping[str, Any]] = None, timeout: Optional[float] = None
    ) -> CallToolResult:
        tool = self._tools.get(name)
        if tool is None:
            # Schéma inconnu (list_tools pas encore appelé): arguments transmis tels quels
            prepared = dict(arguments or {})
        else:
            prepared = prepare_tool_arguments(tool.input_schema, arguments)
        params = {"name": name, "arguments": prepared}
        return CallToolResult.from_dict(await self.request("tools/call", params, timeout=timeout))

    async def list_resources(self, timeout: Optional[float] = None) -> List[Resource]:
        return [Resource.from_dict(r) for r in await self._paginate("resources/list", "resources", timeout)]

    async def read_resource(self, uri: str, timeout: Optional[float] = None) -> List[ResourceContents]:
        result = await self.request("resources/read", {"uri": uri}, timeout=timeout)
        return [ResourceContents.from_dict(c) for c in result.get("contents") or [] if isinstance(c, dict)]

    async def list_prompts(self, timeout: Optional[float] = None) -> List[Prompt]:
        return [Prompt.from_dict(p) for p in await self._paginate("prompts/list", "prompts", timeout)]

    async def get_prompt(
        self, name: str, arguments: Optional[Mapping[str, Any]] = None, timeout: Optional[float] = None
    ) -> GetPromptResult:
        # Les arguments de prompt sont des chaînes côté protocole
        params: Dict[str, Any] = {"name": name}
        if arguments:
            params["arguments"] = {k: v if isinstance(v, str) else jsonrpc.encode(v) for k, v in arguments.items()}
        return GetPromptResult.from_dict(await self.request("prompts/get", params, timeout=timeout))
