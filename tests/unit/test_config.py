"""Tests unitaires: chargement TOML et modèles de configuration."""

from __future__ import annotations

import pytest

from mcp_probe.config import ClientSettings, load_config, resolve_config_path
from mcp_probe.core import ConfigurationError, ConnectionConfig, TransportError, TransportKind

CONFIG = """
[client]
connect_timeout = 4
request_timeout = 12

[supervisor]
grace_period = 0.5

[instrumentation]
capacity = 50

[validator]
strict_arguments = true

[servers.brave]
command = "npx"
args = ["-y", "@modelcontextprotocol/server-brave-search"]
env = { BRAVE_API_KEY = "${TEST_BRAVE_KEY}" }

[servers.remote]
transport = "streamable-http"
url = "https://mcp.example.com/mcp"
timeout = 20
headers = { Authorization = "Bearer ${MISSING_TOKEN_VAR}" }
"""


@pytest.mark.unit
def test_load_settings_from_toml(tmp_path, monkeypatch):
    path = tmp_path / "probe.toml"
    path.write_text(CONFIG, encoding="utf-8")
    monkeypatch.setenv("TEST_BRAVE_KEY", "secret")
    monkeypatch.delenv("MISSING_TOKEN_VAR", raising=False)

    settings = ClientSettings.load(str(path))

    assert settings.connect_timeout == 4.0
    assert settings.request_timeout == 12.0
    assert settings.supervisor.grace_period == 0.5
    assert settings.supervisor.kill_timeout == 1.0
    assert settings.instrumentation.capacity == 50
    assert settings.validator.strict_arguments is True

    brave = settings.server("brave")
    assert brave.transport is TransportKind.STDIO
    assert brave.args == ("-y", "@modelcontextprotocol/server-brave-search")
    assert brave.env["BRAVE_API_KEY"] == "secret"
    assert brave.timeout == 4.0

    remote = settings.server("remote")
    assert remote.transport is TransportKind.HTTP
    assert remote.timeout == 20.0
    # Variable absente: référence laissée telle quelle
    assert remote.headers["Authorization"] == "Bearer ${MISSING_TOKEN_VAR}"


@pytest.mark.unit
def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "env.toml"
    path.write_text("[client]\nrequest_timeout = 3\n", encoding="utf-8")
    monkeypatch.setenv("MCP_PROBE_CONFIG", str(path))

    assert resolve_config_path() == path
    assert ClientSettings.load().request_timeout == 3.0


@pytest.mark.unit
def test_no_config_gives_defaults(monkeypatch):
    monkeypatch.delenv("MCP_PROBE_CONFIG", raising=False)
    assert load_config() == {}
    settings = ClientSettings.load()
    assert settings.servers == {}
    assert settings.instrumentation.capacity == 1000


@pytest.mark.unit
def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "absent.toml"))


@pytest.mark.unit
def test_invalid_toml_raises(tmp_path):
    path = tmp_path / "bad.toml"
    path.write_text("[client\nx = ", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config(str(path))


@pytest.mark.unit
@pytest.mark.parametrize(
    "data,key",
    [
        ({"client": {"connect_timeout": -1}}, "connect_timeout"),
        ({"supervisor": {"grace_period": "soon"}}, "grace_period"),
        ({"instrumentation": {"capacity": 0}}, "capacity"),
        ({"servers": {"x": {"transport": "carrier-pigeon"}}}, "servers.x"),
        ({"servers": {"x": "npx"}}, "servers.x"),
    ],
)
def test_invalid_values_raise_configuration_error(data, key):
    with pytest.raises(ConfigurationError) as exc:
        ClientSettings.from_dict(data)
    assert exc.value.details["key"] == key


@pytest.mark.unit
def test_unknown_server_name():
    with pytest.raises(ConfigurationError):
        ClientSettings().server("nope")


@pytest.mark.unit
def test_connection_config_normalizes_values():
    config = ConnectionConfig(transport="event-stream", url="http://h/sse", timeout=3, headers={"X": 1})
    assert config.transport is TransportKind.SSE
    assert config.timeout == 3.0
    assert config.headers == {"X": "1"}
    with pytest.raises(TypeError):
        config.headers["Y"] = "2"


@pytest.mark.unit
def test_connection_config_rejects_unknown_transport():
    with pytest.raises(TransportError):
        ConnectionConfig(transport="websocket")


@pytest.mark.unit
def test_stdio_helper():
    config = ConnectionConfig.stdio("python", "-m", "server", timeout=2)
    assert config.command == "python"
    assert config.args == ("-m", "server")
    assert config.to_dict()["transport"] == "stdio"
