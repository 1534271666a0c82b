"""
Exceptions personnalisées pour MCP Probe.

Chaque erreur remontée à l'appelant porte un code (catégorie), un message,
et optionnellement un extrait de preuve (evidence) et un texte de remédiation.
La couche présentation affiche `message` puis `remediation` si présent.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ErrorClassification


class McpProbeError(Exception):
    """Exception de base pour toutes les erreurs du client."""

    recoverable = False

    def __init__(
        self,
        message: str,
        code: str = None,
        details: dict = None,
        evidence: str = None,
        remediation: str = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "unknown_error"
        self.details = details or {}
        self.evidence = evidence
        self.remediation = remediation

    @property
    def category(self) -> str:
        return self.code

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"category": self.category, "message": self.message}
        if self.evidence:
            data["evidence"] = self.evidence
        if self.remediation:
            data["remediation"] = self.remediation
        if self.details:
            data["details"] = dict(self.details)
        return data

    def __str__(self):
        if self.details:
            return f"[{self.code}] {self.message} - Détails: {self.details}"
        return f"[{self.code}] {self.message}"


class ConfigurationError(McpProbeError):
    """Erreur de configuration (fichier manquant, valeur invalide)."""

    def __init__(self, message: str, config_key: str = None):
        super().__init__(
            message=message,
            code="config_error",
            details={"key": config_key} if config_key else {},
        )


class ValidationError(McpProbeError):
    """Commande refusée avant tout lancement de processus."""

    def __init__(self, message: str, token: str = None, value: str = None):
        details: Dict[str, Any] = {}
        if token is not None:
            details["token"] = token
        if value is not None:
            details["value"] = value[:200]
        super().__init__(
            message=message,
            code="validation_error",
            details=details,
            evidence=value[:200] if value else None,
            remediation="Retirez les caractères shell de la commande ou des arguments.",
        )
        self.token = token


class ProcessSpawnError(McpProbeError):
    """Le système n'a pas pu lancer l'exécutable."""

    def __init__(self, message: str, command: str = None, os_error: str = None):
        details: Dict[str, Any] = {}
        if command:
            details["command"] = command
        if os_error:
            details["os_error"] = os_error
        super().__init__(
            message=message,
            code="spawn_error",
            details=details,
            evidence=os_error,
            remediation="Vérifiez que la commande est installée et présente dans le PATH.",
        )


class StartupFailureError(McpProbeError):
    """Le processus a démarré mais n'est jamais devenu un serveur MCP valide."""

    def __init__(self, classification: "ErrorClassification", exit_code: Optional[int] = None):
        category = classification.category.value
        message = f"Le serveur MCP n'a pas démarré ({category})"
        if classification.evidence:
            message = f"{message}: {classification.evidence}"
        super().__init__(
            message=message,
            code="startup_failure",
            details={"startup_category": category, "exit_code": exit_code},
            evidence=classification.evidence or None,
            remediation=classification.remediation or None,
        )
        self.classification = classification
        self.exit_code = exit_code

    @property
    def startup_category(self):
        return self.classification.category


class TransportError(McpProbeError):
    """Erreur réseau ou de flux (sse/http) ou transport mal configuré."""

    recoverable = True

    def __init__(self, message: str, transport: str = None, status_code: int = None):
        details: Dict[str, Any] = {}
        if transport:
            details["transport"] = transport
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message=message, code="transport_error", details=details)


class ProtocolError(McpProbeError):
    """Échec du handshake ou d'un échange requête/réponse JSON-RPC."""

    def __init__(
        self,
        message: str,
        rpc_code: int = None,
        method: str = None,
        evidence: str = None,
        code: str = "protocol_error",
    ):
        details: Dict[str, Any] = {}
        if rpc_code is not None:
            details["rpc_code"] = rpc_code
        if method:
            details["method"] = method
        super().__init__(message=message, code=code, details=details, evidence=evidence)
        self.rpc_code = rpc_code
        self.method = method


class ProtocolTimeoutError(ProtocolError):
    """Aucune réponse dans le délai imparti."""

    recoverable = True

    def __init__(self, message: str, method: str = None, timeout: float = None):
        super().__init__(message=message, method=method, code="protocol_timeout")
        if timeout is not None:
            self.details["timeout"] = timeout


class NotConnectedError(McpProbeError):
    """Opération demandée hors de l'état connecté."""

    def __init__(self, operation: str = None, state: str = None):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if state:
            details["state"] = state
        super().__init__(
            message="Aucune connexion MCP active",
            code="not_connected",
            details=details,
            remediation="Connectez-vous à un serveur avant d'appeler cette opération.",
        )


class ConnectionStateError(McpProbeError):
    """Transition d'état refusée (ex: second connect concurrent)."""

    def __init__(self, message: str, current: str = None, target: str = None):
        details: Dict[str, Any] = {}
        if current:
            details["current"] = current
        if target:
            details["target"] = target
        super().__init__(message=message, code="connection_state_error", details=details)
