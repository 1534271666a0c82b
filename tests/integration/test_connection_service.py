"""Tests d'intégration: ConnectionService de bout en bout (stdio réel).

Objectifs:
    - Commande dangereuse refusée sans aucun lancement
    - Échec de démarrage classé (variable d'environnement manquante)
    - Processus qui n'est pas un serveur MCP → erreur protocolaire
    - Déconnexion unique malgré des appels concurrents
    - Opérations MCP complètes et état de santé
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import threading

import pytest
import pytest_asyncio

from mcp_probe.core import (
    ConnectionConfig,
    ConnectionState,
    ConnectionStateError,
    NotConnectedError,
    ProtocolError,
    ProtocolTimeoutError,
    StartupFailureError,
    ValidationError,
)
from mcp_probe.config import ClientSettings, SupervisorSettings
from mcp_probe.core.models import Direction, MessageKind, StartupCategory
from mcp_probe.features.process import ProcessController, select_controller
from mcp_probe.services import create_connection_service


@pytest_asyncio.fixture
async def service(fast_settings):
    svc = create_connection_service(fast_settings)
    yield svc
    await svc.close()


async def _eventually(predicate, timeout: float = 5.0) -> bool:
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.02)
    return predicate()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_shell_metacharacters_are_rejected_before_spawn(service, monkeypatch):
    spawned = []

    async def spy(*args, **kwargs):
        spawned.append(args)
        raise AssertionError("spawn ne doit pas être appelé")

    monkeypatch.setattr(service.supervisor, "spawn", spy)

    with pytest.raises(ValidationError):
        await service.connect(ConnectionConfig.stdio("ls;rm -rf /"))

    assert spawned == []
    assert service.state is ConnectionState.FAILED
    assert service.health().last_error["category"] == "validation_error"
    assert service.supervisor.tracked_count == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_missing_env_var_is_classified(service):
    config = ConnectionConfig.stdio(
        sys.executable, "-c", "print('Error: X environment variable is required'); exit(1)", timeout=10.0
    )
    with pytest.raises(StartupFailureError) as exc:
        await service.connect(config)

    error = exc.value
    assert error.startup_category is StartupCategory.MISSING_ENV_VAR
    assert "X" in error.remediation
    assert "X environment variable" in str(error)
    assert error.exit_code == 1
    assert service.state is ConnectionState.FAILED
    assert service.supervisor.tracked_count == 0
    assert service.error_statistics().by_category == {"startup_failure:missing_env_var": 1}


@pytest.mark.integration
@pytest.mark.asyncio
@pytest.mark.skipif(not os.path.exists("/bin/ls"), reason="/bin/ls absent")
async def test_non_mcp_process_is_protocol_error(service):
    with pytest.raises(ProtocolError) as exc:
        await service.connect(ConnectionConfig.stdio("/bin/ls", "/", timeout=10.0))
    assert not isinstance(exc.value, StartupFailureError)
    assert service.state is ConnectionState.FAILED
    assert service.supervisor.tracked_count == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_silent_server_times_out(service, fake_server_config):
    with pytest.raises(ProtocolTimeoutError):
        await service.connect(fake_server_config("--hang", timeout=0.5))
    assert service.state is ConnectionState.FAILED
    assert service.supervisor.tracked_count == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_full_session_over_stdio(service, fake_server_config):
    info = await service.connect(fake_server_config("--banner"))
    assert info.name == "fake-mcp"
    assert service.is_connected

    tools = await service.list_tools()
    assert {t.name for t in tools} >= {"echo", "notify"}

    result = await service.call_tool("echo", {"message": "salut", "paths": [], "tags": []})
    assert json.loads(result.text) == {"message": "salut", "paths": []}

    resources = await service.list_resources()
    assert [r.uri for r in resources] == ["memo://one", "memo://two"]
    contents = await service.read_resource("memo://one")
    assert contents[0].text == "contenu de memo://one"

    prompts = await service.list_prompts()
    assert prompts[0].arguments[0].required is True
    prompt = await service.get_prompt("greet", {"who": "Ada"})
    assert prompt.messages[0].content.text == "Bonjour Ada"

    await service.ping()

    health = service.health()
    assert health.connected
    assert health.server_info.name == "fake-mcp"
    assert health.to_dict()["state"] == "connected"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_notifications_reach_listener_and_debug_log(service, fake_server_config):
    received = []
    service.set_notification_listener(received.append)
    await service.connect(fake_server_config())

    await service.call_tool("notify", {})
    assert await _eventually(lambda: received)
    assert received[0]["params"]["data"] == "hello"

    inbound = [
        e for e in service.debug_snapshot() if e.kind is MessageKind.NOTIFICATION and e.direction is Direction.INBOUND
    ]
    assert inbound[0].method == "notifications/message"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_concurrent_disconnect_closes_once(service, fake_server_config):
    await service.connect(fake_server_config())

    await asyncio.gather(service.disconnect(), service.disconnect(), service.disconnect())

    closes = [
        e
        for e in service.debug_snapshot()
        if e.kind is MessageKind.TRANSPORT_EVENT and e.payload.startswith("close")
    ]
    assert len(closes) == 1
    assert service.state is ConnectionState.IDLE
    assert service.supervisor.tracked_count == 0
    await service.disconnect()
    assert service.state is ConnectionState.IDLE


@pytest.mark.integration
@pytest.mark.asyncio
async def test_second_connect_is_rejected(service, fake_server_config):
    await service.connect(fake_server_config())
    with pytest.raises(ConnectionStateError):
        await service.connect(fake_server_config())
    assert service.is_connected
    assert service.supervisor.tracked_count == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_operations_require_connection(service):
    with pytest.raises(NotConnectedError) as exc:
        await service.list_tools()
    assert exc.value.details == {"operation": "list_tools", "state": "idle"}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_reconnect_after_failure(service, fake_server_config):
    with pytest.raises(ValidationError):
        await service.connect(ConnectionConfig.stdio("a|b"))
    await service.connect(fake_server_config())
    assert service.is_connected
    await service.disconnect()
    await service.connect(fake_server_config())
    assert service.is_connected


@pytest.mark.integration
@pytest.mark.asyncio
async def test_disconnect_during_connect_aborts(service, fake_server_config):
    connect_task = asyncio.ensure_future(service.connect(fake_server_config("--hang", timeout=30.0)))
    assert await _eventually(lambda: service.supervisor.tracked_count == 1)

    await service.disconnect()

    with pytest.raises(ConnectionStateError):
        await connect_task
    assert service.state is ConnectionState.IDLE
    assert service.supervisor.tracked_count == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_request_disconnect_from_another_thread(service, fake_server_config):
    await service.connect(fake_server_config())

    thread = threading.Thread(target=service.request_disconnect)
    thread.start()
    thread.join()

    assert await _eventually(lambda: service.state is ConnectionState.IDLE)
    assert service.supervisor.tracked_count == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_error_statistics_and_reset(service, fake_server_config):
    await service.connect(fake_server_config())
    with pytest.raises(ProtocolError):
        await service.call_tool("echo_big", {"size": "huge"})

    stats = service.error_statistics()
    assert stats.total_errors == 1
    assert stats.last_error["operation"] == "call_tool"
    assert stats.last_error["details"]["rpc_code"] == -32602

    service.reset_error_statistics()
    assert service.health().error_counts == {}
    service.clear_debug()
    assert service.debug_snapshot() == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_server_ping_and_reply_appear_in_debug_log(service, fake_server_config):
    await service.connect(fake_server_config())
    await service.call_tool("ping_client", {})

    def server_ping_entries():
        return [e for e in service.debug_snapshot() if e.message_id == "srv-ping"]

    assert await _eventually(lambda: len(server_ping_entries()) == 2)
    entries = server_ping_entries()
    assert [(e.direction, e.kind) for e in entries] == [
        (Direction.INBOUND, MessageKind.REQUEST),
        (Direction.OUTBOUND, MessageKind.RESPONSE),
    ]
    assert entries[0].method == "ping"


class StubbornController(ProcessController):
    """Contrôleur de la plateforme dont les signaux restent sans effet tant que `stubborn`."""

    name = "stubborn"

    def __init__(self):
        self.inner = select_controller()
        self.stubborn = True

    async def spawn(self, command, args, *, env, cwd, limit):
        return await self.inner.spawn(command, args, env=env, cwd=cwd, limit=limit)

    def graceful_stop(self, proc, group) -> None:
        if not self.stubborn:
            self.inner.graceful_stop(proc, group)

    def force_kill(self, proc, group) -> None:
        if not self.stubborn:
            self.inner.force_kill(proc, group)

    def release(self, group) -> None:
        self.inner.release(group)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_no_second_process_while_previous_one_survives(fake_server_config):
    controller = StubbornController()
    settings = ClientSettings(
        supervisor=SupervisorSettings(grace_period=0.2, kill_timeout=0.2, reap_interval=0.05),
    )
    svc = create_connection_service(settings, controller=controller)
    try:
        silent = ConnectionConfig.stdio(sys.executable, "-c", "import time; time.sleep(60)", timeout=0.3)
        with pytest.raises(ProtocolTimeoutError):
            await svc.connect(silent)
        assert svc.supervisor.tracked_count == 1

        with pytest.raises(ConnectionStateError):
            await svc.connect(fake_server_config())
        assert svc.supervisor.tracked_count == 1

        controller.stubborn = False
        await svc.connect(fake_server_config())
        assert svc.is_connected
        assert svc.supervisor.tracked_count == 1
    finally:
        controller.stubborn = False
        await svc.close()
    assert svc.supervisor.tracked_count == 0
