"""Shared test fixtures for edgeswap."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from edgeswap.config import DeploySettings
from edgeswap.core.agent import ExecutionAgent, LocalBuildAgent
from edgeswap.core.config_store import InMemoryConfigStore, ParameterRepository
from edgeswap.core.distribution import DistributionManager
from edgeswap.core.edge import InMemoryEdgeNetwork
from edgeswap.core.event_bus import EventBus
from edgeswap.core.object_store import InMemoryObjectStore
from edgeswap.core.run_ledger import RunLedger
from edgeswap.core.stage_machine import RunStateMachine
from edgeswap.models.deployment import DistributionRecord
from edgeswap.models.events import SourceChangedEvent
from edgeswap.models.run import PipelineRun
from edgeswap.notify.sinks import BaseSink
from edgeswap.notify.sinks.local_file import LocalFileSink
from edgeswap.runtime import Runtime, build_runtime, seed_local_service

SERVICE = "storefront"


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def machine(ledger: RunLedger) -> RunStateMachine:
    return RunStateMachine(ledger)


@pytest.fixture
def config_store() -> InMemoryConfigStore:
    return InMemoryConfigStore()


@pytest.fixture
def objects() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def edge() -> InMemoryEdgeNetwork:
    return InMemoryEdgeNetwork()


@pytest.fixture
def production(edge: InMemoryEdgeNetwork) -> DistributionRecord:
    """A production distribution serving v1."""
    return edge.create_production("v1")


@pytest.fixture
def parameters(
    config_store: InMemoryConfigStore, production: DistributionRecord
) -> ParameterRepository:
    """Parameters of the test service, seeded against ``production``."""
    repo = ParameterRepository(config_store, SERVICE)
    repo.initialize(production_distribution_id=production.id, frontend_version="v1")
    return repo


@pytest.fixture
def distributions(
    edge: InMemoryEdgeNetwork, objects: InMemoryObjectStore
) -> DistributionManager:
    return DistributionManager(edge, objects)


@pytest.fixture
def settings(tmp_dir: Path) -> DeploySettings:
    """Settings for the test service with every path under tmp_dir."""
    return DeploySettings(
        _env_file=None,
        service_name=SERVICE,
        repository=SERVICE,
        branch="main",
        ledger_path=tmp_dir / "ledger.db",
        config_store_path=tmp_dir / "parameters.db",
        object_store_path=tmp_dir / "objects",
        events_path=tmp_dir / "events",
    )


@pytest.fixture
def make_runtime(
    tmp_dir: Path,
    settings: DeploySettings,
    ledger: RunLedger,
) -> Callable[..., Runtime]:
    """Factory fixture: a seeded, fully in-memory runtime.

    ``edge``, ``agent`` and ``sinks`` replace the defaults; any other
    keyword is applied to the settings before wiring.
    """

    def _factory(
        *,
        edge: InMemoryEdgeNetwork | None = None,
        agent: ExecutionAgent | None = None,
        sinks: list[BaseSink] | None = None,
        **overrides: Any,
    ) -> Runtime:
        effective = settings.model_copy(update=overrides) if overrides else settings
        edge = edge or InMemoryEdgeNetwork()
        runtime = build_runtime(
            effective,
            edge=edge,
            agent=agent or LocalBuildAgent(tmp_dir / "builds"),
            config_store=InMemoryConfigStore(),
            objects=InMemoryObjectStore(),
            ledger=ledger,
            bus=EventBus(max_deliveries=effective.max_event_deliveries),
            sinks=[LocalFileSink(tmp_dir / "approvals")] if sinks is None else sinks,
        )
        seed_local_service(runtime, edge)
        return runtime

    return _factory


@pytest.fixture
def runtime(make_runtime: Callable[..., Runtime]) -> Runtime:
    return make_runtime()


@pytest.fixture
def make_source_event() -> Callable[..., SourceChangedEvent]:
    """Factory fixture: a SourceChangedEvent that matches the test service."""

    def _factory(**overrides: Any) -> SourceChangedEvent:
        defaults: dict[str, Any] = {
            "service": SERVICE,
            "repository": SERVICE,
            "branch": "main",
            "commit_id": "3f2a9c1",
        }
        defaults.update(overrides)
        return SourceChangedEvent(**defaults)

    return _factory


@pytest.fixture
def run_to_approval(
    make_source_event: Callable[..., SourceChangedEvent],
) -> Callable[[Runtime], PipelineRun]:
    """Publish a source change, deliver it, and return the suspended run."""

    def _drive(rt: Runtime) -> PipelineRun:
        rt.bus.publish(make_source_event())
        rt.bus.deliver()
        run = rt.orchestrator.active_run
        assert run is not None
        return run

    return _drive
