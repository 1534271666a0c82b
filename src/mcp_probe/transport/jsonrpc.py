"""
Helpers JSON-RPC 2.0 (messages en dict, une ligne JSON par message sur stdio).
"""
from __future__ import annotations

import itertools
import json
from typing import Any, Dict, Optional, Union

from ..core.constants import JSONRPC_METHOD_NOT_FOUND
from ..core.models import MessageKind

JsonRpcMessage = Dict[str, Any]


def make_request(method: str, params: Optional[Dict[str, Any]], req_id: Union[int, str]) -> JsonRpcMessage:
    message: JsonRpcMessage = {"jsonrpc": "2.0", "id": req_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def make_notification(method: str, params: Optional[Dict[str, Any]] = None) -> JsonRpcMessage:
    message: JsonRpcMessage = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return message


def make_result(req_id: Any, result: Dict[str, Any]) -> JsonRpcMessage:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def make_error(req_id: Any, code: int, message: str) -> JsonRpcMessage:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": int(code), "message": message}}


def method_not_found(req_id: Any, method: str) -> JsonRpcMessage:
    return make_error(req_id, JSONRPC_METHOD_NOT_FOUND, f"Method not found: {method}")


def is_request(obj: object) -> bool:
    return isinstance(obj, dict) and isinstance(obj.get("method"), str) and "id" in obj


def is_notification(obj: object) -> bool:
    return isinstance(obj, dict) and isinstance(obj.get("method"), str) and "id" not in obj


def is_response(obj: object) -> bool:
    return isinstance(obj, dict) and "method" not in obj and ("result" in obj or "error" in obj)


def is_jsonrpc_message(obj: object) -> bool:
    if isinstance(obj, list):
        return bool(obj) and all(is_jsonrpc_message(item) for item in obj)
    return isinstance(obj, dict) and obj.get("jsonrpc") == "2.0"


def classify(obj: object) -> MessageKind:
    if is_response(obj):
        return MessageKind.ERROR if "error" in obj else MessageKind.RESPONSE
    if is_request(obj):
        return MessageKind.REQUEST
    if is_notification(obj):
        return MessageKind.NOTIFICATION
    return MessageKind.TRANSPORT_EVENT


def encode(obj: object) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def try_parse_line(raw_line: Union[bytes, str]) -> Optional[object]:
    """JSON d'une ligne si elle commence par `{` ou `[`, sinon None."""
    if isinstance(raw_line, bytes):
        raw_line = raw_line.decode("utf-8", errors="replace")
    stripped = raw_line.strip()
    if not stripped.startswith(("{", "[")):
        return None
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return None


class RequestIds:
    """Compteur d'identifiants de requêtes (un par session)."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)

    def next(self) -> int:
        return next(self._counter)
