"""Wiring: build every collaborator for one service from DeploySettings.

Usage::

    settings = DeploySettings(service_name="storefront")
    runtime = build_runtime(settings, edge=InMemoryEdgeNetwork(), agent=agent)
    runtime.bus.publish(SourceChangedEvent(service="storefront", ...))
    runtime.bus.deliver()

Collaborators not passed in are created from the settings' storage
paths (SQLite config store, filesystem object store, SQLite ledger).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from edgeswap.config import DeploySettings
from edgeswap.core.agent import ExecutionAgent
from edgeswap.core.config_store import ConfigStore, ParameterRepository, SqliteConfigStore
from edgeswap.core.distribution import DistributionManager
from edgeswap.core.edge import EdgeProvider, InMemoryEdgeNetwork
from edgeswap.core.event_bus import EventBus
from edgeswap.core.object_store import LocalObjectStore, ObjectStore, version_prefix
from edgeswap.core.orchestrator import PipelineOrchestrator
from edgeswap.core.purge import PurgeController
from edgeswap.core.run_ledger import RunLedger
from edgeswap.errors import ParameterNotFoundError
from edgeswap.models.parameters import DeploymentParameters
from edgeswap.notify.dispatcher import SinkDispatcher
from edgeswap.notify.gateway import NotificationGateway
from edgeswap.notify.sinks import BaseSink
from edgeswap.notify.sinks.email import EmailSink

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Every collaborator of one service's pipeline, wired together."""

    settings: DeploySettings
    config_store: ConfigStore
    parameters: ParameterRepository
    objects: ObjectStore
    edge: EdgeProvider
    distributions: DistributionManager
    bus: EventBus
    ledger: RunLedger
    dispatcher: SinkDispatcher
    email_sink: EmailSink
    gateway: NotificationGateway
    orchestrator: PipelineOrchestrator
    purge: PurgeController


def build_runtime(
    settings: DeploySettings,
    *,
    edge: EdgeProvider,
    agent: ExecutionAgent,
    config_store: ConfigStore | None = None,
    objects: ObjectStore | None = None,
    ledger: RunLedger | None = None,
    bus: EventBus | None = None,
    sinks: list[BaseSink] | None = None,
) -> Runtime:
    """Wire a runtime; the production guard runs inside the orchestrator."""
    config_store = config_store or SqliteConfigStore(settings.config_store_path)
    objects = objects or LocalObjectStore(settings.object_store_path)
    ledger = ledger or RunLedger(settings.ledger_path)
    bus = bus or EventBus(max_deliveries=settings.max_event_deliveries)

    parameters = ParameterRepository(config_store, settings.service_name)
    distributions = DistributionManager(edge, objects)

    dispatcher = SinkDispatcher()
    email_sink = EmailSink(
        sender=settings.approval_sender,
        fallback_recipients=settings.approval_recipients,
    )
    if settings.approval_recipients:
        dispatcher.register_sink(email_sink)
    for sink in sinks or []:
        dispatcher.register_sink(sink)

    gateway = NotificationGateway(
        dispatcher,
        bus,
        service=settings.service_name,
        recipients=settings.approval_recipients,
        console_url_template=settings.console_url_template,
    )
    orchestrator = PipelineOrchestrator(
        settings=settings,
        bus=bus,
        ledger=ledger,
        parameters=parameters,
        distributions=distributions,
        objects=objects,
        agent=agent,
        gateway=gateway,
    )
    purge = PurgeController(bus, distributions, parameters)

    logger.debug("Runtime ready for service %s", settings.service_name)
    return Runtime(
        settings=settings,
        config_store=config_store,
        parameters=parameters,
        objects=objects,
        edge=edge,
        distributions=distributions,
        bus=bus,
        ledger=ledger,
        dispatcher=dispatcher,
        email_sink=email_sink,
        gateway=gateway,
        orchestrator=orchestrator,
        purge=purge,
    )


def seed_local_service(
    runtime: Runtime, edge: InMemoryEdgeNetwork, *, hosting_bucket: str = ""
) -> DeploymentParameters:
    """Create a production distribution and seed the service's parameters.

    On first use production serves ``settings.initial_version``, whose
    placeholder page is published to the object store first.  When the
    service is already seeded its parameters are kept as they are and
    *edge* gets a production distribution with the stored id, serving
    the stored frontend version.
    """
    try:
        params = runtime.parameters.load()
    except ParameterNotFoundError:
        params = None
    if params is not None:
        edge.create_production(
            params.frontend_version, distribution_id=params.production_distribution_id
        )
        logger.info(
            "Service %s already seeded; production %s serves %s",
            runtime.settings.service_name,
            params.production_distribution_id,
            params.frontend_version,
        )
        return params

    settings = runtime.settings
    version = settings.initial_version
    if not runtime.objects.exists_prefix(version_prefix(version)):
        runtime.objects.put(
            version_prefix(version) + "index.html",
            f"<!doctype html><p>version {version}</p>\n".encode("utf-8"),
        )
    production = edge.create_production(version)
    return runtime.parameters.initialize(
        production_distribution_id=production.id,
        frontend_version=version,
        staging_cleanup_enabled=settings.staging_cleanup_enabled,
        single_header_predicate=settings.single_header_predicate,
        hosting_bucket=hosting_bucket,
    )
