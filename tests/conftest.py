"""
Configuration des tests pytest.
"""
import os
import sys
from pathlib import Path

import pytest

# Ajoute src au path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from mcp_probe.config import ClientSettings, InstrumentationSettings, SupervisorSettings  # noqa: E402
from mcp_probe.core import ConnectionConfig  # noqa: E402

FAKE_SERVER = Path(__file__).resolve().parent / "fixtures" / "fake_mcp_server_stdio.py"


def pytest_configure(config):
    """Enregistre les marqueurs du projet."""
    config.addinivalue_line("markers", "unit: test unitaire sans processus ni réseau")
    config.addinivalue_line("markers", "integration: test lançant des processus réels")


@pytest.fixture
def fake_server_path() -> Path:
    return FAKE_SERVER


@pytest.fixture
def fake_server_config():
    """Fabrique de `ConnectionConfig` stdio vers le faux serveur MCP."""

    def make(*flags: str, timeout: float = 10.0) -> ConnectionConfig:
        return ConnectionConfig.stdio(sys.executable, str(FAKE_SERVER), *flags, timeout=timeout)

    return make


@pytest.fixture
def fast_settings() -> ClientSettings:
    """Fenêtres de terminaison courtes pour garder les tests rapides."""
    return ClientSettings(
        connect_timeout=10.0,
        request_timeout=10.0,
        supervisor=SupervisorSettings(grace_period=1.0, kill_timeout=1.0, reap_interval=0.05),
        instrumentation=InstrumentationSettings(capacity=500),
    )
