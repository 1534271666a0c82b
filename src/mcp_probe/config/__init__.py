"""
Configuration de MCP Probe.
"""

from .loader import load_config, resolve_config_path
from .settings import ClientSettings, SupervisorSettings, InstrumentationSettings, ValidatorSettings

__all__ = [
    "load_config",
    "resolve_config_path",
    "ClientSettings",
    "SupervisorSettings",
    "InstrumentationSettings",
    "ValidatorSettings",
]
