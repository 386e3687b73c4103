"""Tests for the edgeswap Pydantic models: predicates, parameters, run states, events."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from edgeswap.models.deployment import (
    ContinuousDeploymentPolicy,
    DistributionRecord,
    DistributionRole,
    SingleHeaderPredicate,
)
from edgeswap.models.events import (
    EVENT_TYPE_MAP,
    ApprovalOutcome,
    ApprovalStateChangedEvent,
    EventKind,
    SourceChangedEvent,
)
from edgeswap.models.parameters import STAGING_NONE, DeploymentParameters, ParameterPaths
from edgeswap.models.run import (
    ApproveState,
    BuildState,
    DeployState,
    FailedState,
    PipelineRun,
    PromoteState,
    RunState,
    SourceState,
    StageResult,
)
from edgeswap.models.stages import (
    VALID_TRANSITIONS,
    PipelineStage,
    RunStatus,
    StageOutcome,
)


def _approve_state() -> ApproveState:
    source = SourceState(repository="storefront", branch="main", commit_id="abc")
    build = BuildState.from_source(
        source, source_ref="abc", baseline_revision="E1", previous_version="v1"
    )
    deploy = DeployState.from_build(build, version="v2", build_artifact_ref="/b/v2")
    staging = DistributionRecord(
        id="ESTAGING", role=DistributionRole.STAGING, config_revision="E2",
        served_version="v2", origin_path="/v2",
    )
    policy = ContinuousDeploymentPolicy(
        id="pol-1", production_id="EPROD", staging_id="ESTAGING",
        predicate=SingleHeaderPredicate(),
    )
    return ApproveState.from_deploy(deploy, staging=staging, policy=policy)


class TestSingleHeaderPredicate:
    def test_defaults(self):
        predicate = SingleHeaderPredicate()
        assert predicate.header == "aws-cf-cd-staging"
        assert predicate.value == "true"

    def test_header_name_is_case_insensitive(self):
        predicate = SingleHeaderPredicate()
        assert predicate.matches({"AWS-CF-CD-Staging": "true"})

    def test_value_must_match_exactly(self):
        predicate = SingleHeaderPredicate()
        assert not predicate.matches({"aws-cf-cd-staging": "TRUE"})
        assert not predicate.matches({"aws-cf-cd-staging": "false"})

    def test_missing_header_does_not_match(self):
        assert not SingleHeaderPredicate().matches({"accept": "text/html"})

    def test_boolean_value_is_normalised(self):
        assert SingleHeaderPredicate(header="x-staging", value=True).value == "true"

    def test_blank_header_rejected(self):
        with pytest.raises(ValidationError):
            SingleHeaderPredicate(header="  ", value="1")

    def test_serialize_parse(self):
        predicate = SingleHeaderPredicate(header="x-canary", value="yes")
        assert predicate.serialize() == '{"header":"x-canary","value":"yes"}'
        assert SingleHeaderPredicate.parse(predicate.serialize()) == predicate

    def test_frozen(self):
        with pytest.raises(ValidationError):
            SingleHeaderPredicate().value = "false"


class TestParameters:
    def test_paths_are_namespaced_by_service(self):
        paths = ParameterPaths(service="storefront")
        assert paths.frontend_version == "/storefront/version/frontend"
        assert paths.staging_distribution_id == "/storefront/cloudfront/cfcd-staging"
        assert paths.production_distribution_id == "/storefront/cloudfront/cfcd-production"

    def test_all_keys_covers_every_field(self):
        keys = ParameterPaths(service="svc").all_keys()
        assert set(keys) == set(DeploymentParameters.model_fields)
        assert all(key.startswith("/svc/") for key in keys.values())

    def test_has_staging(self):
        params = DeploymentParameters(frontend_version="v1", production_distribution_id="E1")
        assert params.staging_distribution_id == STAGING_NONE
        assert not params.has_staging
        assert params.model_copy(update={"staging_distribution_id": "E2"}).has_staging

    def test_agent_environment(self):
        params = DeploymentParameters(
            frontend_version="v3",
            production_distribution_id="EPROD",
            staging_cleanup_enabled=False,
            hosting_bucket="site-bucket",
        )
        env = params.agent_environment("storefront")
        assert env["SERVICE"] == "storefront"
        assert env["FRONTEND_VERSION"] == "v3"
        assert env["STAGING_DISTRIBUTION_ID"] == "none"
        assert env["STAGING_DISTRIBUTION_CLEANUP_ENABLED"] == "false"
        assert env["BUCKET_NAME"] == "site-bucket"
        assert '"header":"aws-cf-cd-staging"' in env["CONTINUOUS_DEPLOYMENT_POLICY_CUSTOM_HEADER"]


class TestRunStates:
    def test_payload_carries_forward(self):
        state = _approve_state()
        assert state.stage == PipelineStage.APPROVE
        assert state.repository == "storefront"
        assert state.baseline_revision == "E1"
        assert state.version == "v2"
        assert state.staging.id == "ESTAGING"

    def test_promote_from_approve(self):
        promote = PromoteState.from_approve(_approve_state())
        assert promote.stage == PipelineStage.PROMOTE
        assert promote.policy.id == "pol-1"

    def test_promote_requires_staging(self):
        with pytest.raises(ValidationError):
            PromoteState(
                repository="r", branch="b", source_ref="s", baseline_revision="E1",
                previous_version="v1", version="v2", build_artifact_ref="",
            )

    def test_discriminated_union_round_trip(self):
        adapter = TypeAdapter(RunState)
        dumped = _approve_state().model_dump(mode="json")
        restored = adapter.validate_python(dumped)
        assert isinstance(restored, ApproveState)

    def test_run_is_not_terminal_while_running(self):
        run = PipelineRun(service="svc", state=SourceState(repository="r", branch="b"))
        assert run.current_stage == PipelineStage.SOURCE
        assert not run.is_terminal
        assert run.run_id.startswith("run-")

    def test_retryable_failure_is_not_terminal(self):
        failed = FailedState(
            failed_stage=PipelineStage.ROLLED_BACK, error_code="dependency_error",
            retryable=True,
        )
        run = PipelineRun(service="svc", state=failed, status=RunStatus.FAILED)
        assert not run.is_terminal
        final = run.model_copy(update={"state": failed.model_copy(update={"retryable": False})})
        assert final.is_terminal

    def test_last_result(self):
        run = PipelineRun(
            service="svc",
            state=SourceState(repository="r", branch="b"),
            results=[
                StageResult(stage=PipelineStage.DEPLOY, outcome=StageOutcome.PROVISIONING_ERROR),
                StageResult(stage=PipelineStage.DEPLOY, outcome=StageOutcome.SUCCEEDED),
            ],
        )
        assert run.last_result(PipelineStage.DEPLOY).outcome == StageOutcome.SUCCEEDED
        assert run.last_result(PipelineStage.BUILD) is None


class TestTransitions:
    def test_done_has_no_exits(self):
        assert VALID_TRANSITIONS[PipelineStage.DONE] == set()

    def test_approve_only_promotes_or_rolls_back(self):
        assert VALID_TRANSITIONS[PipelineStage.APPROVE] == {
            PipelineStage.PROMOTE,
            PipelineStage.ROLLED_BACK,
        }

    def test_failed_only_returns_to_idle(self):
        assert VALID_TRANSITIONS[PipelineStage.FAILED] == {PipelineStage.IDLE}


class TestEvents:
    def test_registry_covers_every_kind(self):
        assert set(EVENT_TYPE_MAP) == set(EventKind)

    def test_source_event_defaults(self):
        event = SourceChangedEvent(service="svc", repository="r", branch="main")
        assert event.event_kind == EventKind.SOURCE_CHANGED
        assert event.reference_event == "referenceUpdated"
        assert event.event_id

    def test_approval_event(self):
        event = ApprovalStateChangedEvent(
            service="svc", run_id="run-1", outcome=ApprovalOutcome.REJECTED
        )
        assert event.event_kind == EventKind.APPROVAL_STATE_CHANGED
        assert event.outcome == ApprovalOutcome.REJECTED
