"""
Racine de composition: assemble superviseur, validateur, fabrique de
transports, instrumentation et diagnostics autour d'un `ConnectionService`.
"""
from typing import Optional

import httpx

from ..config.settings import ClientSettings
from ..features.diagnostics import ErrorTracker, StartupErrorClassifier
from ..features.instrumentation import ProtocolInstrumentation
from ..features.process import ProcessController, ProcessSupervisor
from ..features.security import CommandValidator
from ..transport.factory import TransportFactory
from .connection import ConnectionService


def create_connection_service(
    settings: Optional[ClientSettings] = None,
    *,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    controller: Optional[ProcessController] = None,
) -> ConnectionService:
    """
    Crée un service prêt à l'emploi.

    Args:
        settings: Paramètres client (défauts si None)
        http_transport: Transport httpx injecté (tests: MockTransport/ASGITransport)
        controller: Contrôleur de processus (défaut: selon la plateforme)
    """
    settings = settings or ClientSettings()

    supervisor = ProcessSupervisor(
        controller,
        grace_period=settings.supervisor.grace_period,
        kill_timeout=settings.supervisor.kill_timeout,
        reap_interval=settings.supervisor.reap_interval,
    )
    factory = TransportFactory(
        supervisor,
        http_transport=http_transport,
        request_timeout=settings.request_timeout,
    )
    return ConnectionService(
        supervisor=supervisor,
        validator=CommandValidator(
            allowed_root=settings.validator.allowed_root,
            strict_arguments=settings.validator.strict_arguments,
        ),
        factory=factory,
        instrumentation=ProtocolInstrumentation(settings.instrumentation.capacity),
        classifier=StartupErrorClassifier(),
        tracker=ErrorTracker(),
        request_timeout=settings.request_timeout,
    )
