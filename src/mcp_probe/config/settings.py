"""
Dataclasses pour la configuration.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..core.constants import (
    DEBUG_BUFFER_CAPACITY,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    REAP_INTERVAL,
    TERMINATE_GRACE_PERIOD,
    TERMINATE_KILL_TIMEOUT,
)
from ..core.exceptions import ConfigurationError, TransportError
from ..core.models import ConnectionConfig
from .loader import load_config


def _positive_float(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Valeur numérique attendue pour '{key}': {value!r}", config_key=key)
    if result <= 0:
        raise ConfigurationError(f"'{key}' doit être strictement positif", config_key=key)
    return result


@dataclass
class SupervisorSettings:
    """Fenêtres de terminaison et fréquence du reaper."""
    grace_period: float = TERMINATE_GRACE_PERIOD
    kill_timeout: float = TERMINATE_KILL_TIMEOUT
    reap_interval: float = REAP_INTERVAL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SupervisorSettings":
        """Crée une instance depuis un dictionnaire."""
        return cls(
            grace_period=_positive_float(data, "grace_period", TERMINATE_GRACE_PERIOD),
            kill_timeout=_positive_float(data, "kill_timeout", TERMINATE_KILL_TIMEOUT),
            reap_interval=_positive_float(data, "reap_interval", REAP_INTERVAL),
        )


@dataclass
class InstrumentationSettings:
    """Capacité du journal de trafic."""
    capacity: int = DEBUG_BUFFER_CAPACITY

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstrumentationSettings":
        capacity = data.get("capacity", DEBUG_BUFFER_CAPACITY)
        if not isinstance(capacity, int) or capacity <= 0:
            raise ConfigurationError("'capacity' doit être un entier positif", config_key="capacity")
        return cls(capacity=capacity)


@dataclass
class ValidatorSettings:
    allowed_root: Optional[str] = None
    strict_arguments: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidatorSettings":
        return cls(
            allowed_root=data.get("allowed_root") or None,
            strict_arguments=bool(data.get("strict_arguments", False)),
        )


@dataclass
class ClientSettings:
    """Configuration globale du client."""
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    instrumentation: InstrumentationSettings = field(default_factory=InstrumentationSettings)
    validator: ValidatorSettings = field(default_factory=ValidatorSettings)
    servers: Dict[str, ConnectionConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientSettings":
        """
        Crée une instance depuis un dictionnaire.

        Structure attendue:
            [client] connect_timeout / request_timeout
            [supervisor] grace_period / kill_timeout / reap_interval
            [instrumentation] capacity
            [validator] allowed_root / strict_arguments
            [servers.<nom>] transport / command / args / url / timeout / env / headers
        """
        client = data.get("client", {})
        connect_timeout = _positive_float(client, "connect_timeout", DEFAULT_CONNECT_TIMEOUT)

        servers: Dict[str, ConnectionConfig] = {}
        for name, raw in (data.get("servers") or {}).items():
            if not isinstance(raw, dict):
                raise ConfigurationError(f"Serveur '{name}' mal formé", config_key=f"servers.{name}")
            raw = {"timeout": connect_timeout, **raw}
            try:
                servers[name] = ConnectionConfig.from_dict(raw)
            except (ValueError, TransportError) as e:
                raise ConfigurationError(
                    f"Serveur '{name}': {e}", config_key=f"servers.{name}"
                ) from e

        return cls(
            connect_timeout=connect_timeout,
            request_timeout=_positive_float(client, "request_timeout", DEFAULT_REQUEST_TIMEOUT),
            supervisor=SupervisorSettings.from_dict(data.get("supervisor", {})),
            instrumentation=InstrumentationSettings.from_dict(data.get("instrumentation", {})),
            validator=ValidatorSettings.from_dict(data.get("validator", {})),
            servers=servers,
        )

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "ClientSettings":
        return cls.from_dict(load_config(config_path))

    def server(self, name: str) -> ConnectionConfig:
        try:
            return self.servers[name]
        except KeyError:
            raise ConfigurationError(f"Serveur inconnu: {name}", config_key=f"servers.{name}") from None
