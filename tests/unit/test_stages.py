"""Tests for the concrete pipeline stages driven through BaseStage.run_stage."""

from __future__ import annotations

from pathlib import Path

import pytest

from edgeswap.core.agent import AgentResult, LocalBuildAgent
from edgeswap.core.config_store import ParameterRepository
from edgeswap.core.distribution import DistributionManager
from edgeswap.core.edge import InMemoryEdgeNetwork
from edgeswap.core.event_bus import EventBus
from edgeswap.core.object_store import InMemoryObjectStore
from edgeswap.errors import AgentFailure, ConflictError, ProvisioningError, VersionExistsError
from edgeswap.models.deployment import DistributionRecord
from edgeswap.models.run import (
    ApproveState,
    BuildState,
    CleanupOrDoneState,
    DeployState,
    DoneState,
    PipelineRun,
    PromoteState,
    SourceState,
)
from edgeswap.models.stages import PipelineStage, StageOutcome
from edgeswap.notify.dispatcher import SinkDispatcher
from edgeswap.notify.gateway import NotificationGateway
from edgeswap.notify.sinks.local_file import LocalFileSink
from edgeswap.stages import STAGE_REGISTRY, StageContext, StageExecutionError, get_stage

SERVICE = "storefront"


class ScriptedAgent:
    """Delegates to LocalBuildAgent unless told to fail a step."""

    def __init__(self, root: Path, *, fail_on: str = "", raise_on: str = "") -> None:
        self._inner = LocalBuildAgent(root)
        self._fail_on = fail_on
        self._raise_on = raise_on
        self.calls: list[tuple[str, dict[str, str]]] = []

    def run(self, stage_name: str, env: dict[str, str]) -> AgentResult:
        self.calls.append((stage_name, dict(env)))
        if stage_name == self._raise_on:
            raise RuntimeError("agent crashed")
        if stage_name == self._fail_on:
            return AgentResult(exit_code=1, output="npm ERR!")
        return self._inner.run(stage_name, env)


@pytest.fixture
def agent(tmp_dir: Path) -> ScriptedAgent:
    return ScriptedAgent(tmp_dir / "builds")


@pytest.fixture
def ctx(
    tmp_dir: Path,
    parameters: ParameterRepository,
    distributions: DistributionManager,
    objects: InMemoryObjectStore,
    agent: ScriptedAgent,
) -> StageContext:
    dispatcher = SinkDispatcher()
    dispatcher.register_sink(LocalFileSink(tmp_dir / "approvals"))
    return StageContext(
        service=SERVICE,
        parameters=parameters,
        distributions=distributions,
        objects=objects,
        agent=agent,
        gateway=NotificationGateway(dispatcher, EventBus(), service=SERVICE),
    )


def _step(run: PipelineRun, ctx: StageContext) -> PipelineRun:
    new_state, _ = get_stage(run.current_stage).run_stage(run, ctx)
    return run.model_copy(update={"state": new_state})


def _run_until(stage: PipelineStage, ctx: StageContext) -> PipelineRun:
    run = PipelineRun(
        service=SERVICE,
        state=SourceState(repository=SERVICE, branch="main", commit_id="c0ffee"),
    )
    while run.current_stage != stage:
        run = _step(run, ctx)
    return run


class TestRegistry:
    def test_every_active_stage_registered(self):
        assert set(STAGE_REGISTRY) == {
            PipelineStage.SOURCE,
            PipelineStage.BUILD,
            PipelineStage.DEPLOY,
            PipelineStage.APPROVE,
            PipelineStage.PROMOTE,
            PipelineStage.CLEANUP_OR_DONE,
        }

    def test_resting_positions_have_no_stage(self):
        with pytest.raises(KeyError):
            get_stage(PipelineStage.DONE)

    def test_wrong_input_state(self, ctx: StageContext):
        run = PipelineRun(service=SERVICE, state=SourceState(repository="r", branch="b"))
        with pytest.raises(StageExecutionError):
            get_stage(PipelineStage.BUILD).run_stage(run, ctx)

    def test_package_exports_resolve(self):
        import edgeswap.stages as stages

        for name in stages.__all__:
            assert getattr(stages, name) is not None


class TestSourceStage:
    def test_captures_production_baseline(self, ctx, production: DistributionRecord):
        run = _run_until(PipelineStage.BUILD, ctx)
        assert isinstance(run.state, BuildState)
        assert run.state.baseline_revision == production.config_revision
        assert run.state.previous_version == "v1"
        assert run.state.source_ref == "c0ffee"

    def test_agent_gets_source_env(self, ctx, agent: ScriptedAgent):
        _run_until(PipelineStage.BUILD, ctx)
        name, env = agent.calls[0]
        assert name == "source"
        assert env["SOURCE_COMMIT_ID"] == "c0ffee"
        assert env["SERVICE"] == SERVICE

    def test_unexpected_agent_error_is_wrapped(self, tmp_dir, parameters, distributions, objects):
        crashing = StageContext(
            service=SERVICE,
            parameters=parameters,
            distributions=distributions,
            objects=objects,
            agent=ScriptedAgent(tmp_dir, raise_on="source"),
            gateway=NotificationGateway(SinkDispatcher(), EventBus(), service=SERVICE),
        )
        with pytest.raises(StageExecutionError):
            _run_until(PipelineStage.BUILD, crashing)


class TestBuildStage:
    def test_bumps_version(self, ctx, agent: ScriptedAgent):
        run = _run_until(PipelineStage.DEPLOY, ctx)
        assert isinstance(run.state, DeployState)
        assert run.state.version == "v2"
        assert Path(run.state.build_artifact_ref, "index.html").is_file()
        build_env = dict(agent.calls)["build"]
        assert build_env["REACT_APP_VERSION_FRONTEND"] == "v2"

    def test_agent_failure(self, tmp_dir, parameters, distributions, objects):
        failing = StageContext(
            service=SERVICE,
            parameters=parameters,
            distributions=distributions,
            objects=objects,
            agent=ScriptedAgent(tmp_dir, fail_on="build"),
            gateway=NotificationGateway(SinkDispatcher(), EventBus(), service=SERVICE),
        )
        with pytest.raises(AgentFailure) as exc_info:
            _run_until(PipelineStage.DEPLOY, failing)
        assert exc_info.value.exit_code == 1
        assert exc_info.value.stage_name == "build"

    def test_claims_version_before_deploy(self, ctx, parameters: ParameterRepository):
        _run_until(PipelineStage.DEPLOY, ctx)
        assert parameters.load().last_built_version == "v2"
        assert parameters.load().frontend_version == "v1"
        run = _run_until(PipelineStage.DEPLOY, ctx)
        assert run.state.version == "v3"

    def test_refuses_published_version(self, ctx, objects: InMemoryObjectStore, parameters):
        objects.put("v2/index.html", b"<p>earlier v2</p>")
        with pytest.raises(VersionExistsError):
            _run_until(PipelineStage.DEPLOY, ctx)
        assert objects.get("v2/index.html") == b"<p>earlier v2</p>"
        # The refused id stays claimed; the next build moves past it.
        assert parameters.load().last_built_version == "v2"
        assert _run_until(PipelineStage.DEPLOY, ctx).state.version == "v3"


class TestDeployStage:
    def test_creates_staging_and_policy(
        self, ctx, edge: InMemoryEdgeNetwork, production, parameters, objects
    ):
        run = _run_until(PipelineStage.APPROVE, ctx)
        assert isinstance(run.state, ApproveState)
        assert objects.exists_prefix("v2/")
        assert parameters.load().staging_distribution_id == run.state.staging.id
        assert run.state.policy.staging_id == run.state.staging.id
        assert edge.route(production.id, {"aws-cf-cd-staging": "true"}).served_version == "v2"
        assert edge.route(production.id, {}).served_version == "v1"

    def test_missing_build_output(self, ctx):
        run = _run_until(PipelineStage.DEPLOY, ctx)
        empty = run.model_copy(
            update={"state": run.state.model_copy(update={"build_artifact_ref": ""})}
        )
        with pytest.raises(ProvisioningError):
            get_stage(PipelineStage.DEPLOY).run_stage(empty, ctx)

    def test_removes_stale_staging(self, ctx, edge: InMemoryEdgeNetwork, production, parameters):
        first = _run_until(PipelineStage.APPROVE, ctx)
        stale_id = first.state.staging.id

        second = _run_until(PipelineStage.APPROVE, ctx)
        ids = {d.id for d in edge.list_distributions()}
        assert stale_id not in ids
        assert second.state.staging.id in ids
        assert len(edge.list_policies()) == 1
        assert parameters.load().staging_distribution_id == second.state.staging.id


class TestApproveStage:
    def test_requests_approval(self, ctx, tmp_dir: Path):
        run = _run_until(PipelineStage.APPROVE, ctx)
        new_state, result = get_stage(PipelineStage.APPROVE).run_stage(run, ctx)
        assert result.outcome == StageOutcome.APPROVAL_PENDING
        assert new_state.approval_requested_at is not None
        assert run.state.staging.id in new_state.approval_link
        files = LocalFileSink(tmp_dir / "approvals").list_requests(SERVICE, run.run_id)
        assert len(files) == 1


class TestPromoteAndCleanup:
    def _approved(self, ctx) -> PipelineRun:
        run = _run_until(PipelineStage.APPROVE, ctx)
        return run.model_copy(update={"state": PromoteState.from_approve(run.state)})

    def test_promote(self, ctx, edge, production, parameters):
        run = _step(self._approved(ctx), ctx)
        assert isinstance(run.state, CleanupOrDoneState)
        assert edge.get_distribution(production.id).served_version == "v2"
        assert parameters.load().frontend_version == "v2"
        assert run.state.production_revision == edge.get_distribution(production.id).config_revision

    def test_promote_conflict(self, ctx, edge, production, parameters):
        run = self._approved(ctx)
        current = edge.get_distribution(production.id)
        edge.update_distribution(
            production.id, served_version="v1b", if_match=current.config_revision
        )
        with pytest.raises(ConflictError):
            _step(run, ctx)
        assert parameters.load().frontend_version == "v1"

    def test_cleanup_deletes_staging(self, ctx, edge, production, parameters):
        run = _step(_step(self._approved(ctx), ctx), ctx)
        assert isinstance(run.state, DoneState)
        assert run.state.staging_deleted is True
        assert [d.id for d in edge.list_distributions()] == [production.id]
        assert edge.list_policies() == []
        assert not parameters.load().has_staging

    def test_cleanup_disabled(self, ctx, edge, parameters, config_store):
        config_store.put(parameters.paths.staging_cleanup_enabled, "false")
        run = _step(self._approved(ctx), ctx)
        new_state, result = get_stage(PipelineStage.CLEANUP_OR_DONE).run_stage(run, ctx)
        assert result.outcome == StageOutcome.SKIPPED
        assert new_state.staging_deleted is False
        assert parameters.load().staging_distribution_id == run.state.staging.id
        assert len(edge.list_distributions()) == 2
