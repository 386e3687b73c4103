"""Pipeline run model: the run state is a tagged variant.

Each ``PipelineStage`` has its own payload model, discriminated on the
``stage`` field.  A state can only be constructed from its predecessor's
payload (see the ``from_*`` constructors), so a ``PromoteState`` cannot
exist without the staging distribution and policy that only Deploy
produces.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from edgeswap.models.deployment import ContinuousDeploymentPolicy, DistributionRecord
from edgeswap.models.stages import PipelineStage, RunStatus, StageOutcome


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _carry(state: BaseModel, base: type[BaseModel]) -> dict[str, Any]:
    """Copy the fields *base* declares from *state*, minus bookkeeping."""
    return {
        name: getattr(state, name)
        for name in base.model_fields
        if name not in ("stage", "entered_at")
    }


class _StateBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    entered_at: datetime = Field(default_factory=_now)


class _Triggered(_StateBase):
    repository: str
    branch: str
    commit_id: str = ""
    trigger_event_id: str = ""


class _CheckedOut(_Triggered):
    source_ref: str
    baseline_revision: str  # production config_revision when the run started
    previous_version: str  # production served_version when the run started


class _Versioned(_CheckedOut):
    version: str
    build_artifact_ref: str


class _Staged(_Versioned):
    staging: DistributionRecord
    policy: ContinuousDeploymentPolicy


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------


class IdleState(_StateBase):
    """Back at rest after a purge."""

    stage: Literal[PipelineStage.IDLE] = PipelineStage.IDLE
    purged_version: str = ""


class SourceState(_Triggered):
    stage: Literal[PipelineStage.SOURCE] = PipelineStage.SOURCE


class BuildState(_CheckedOut):
    stage: Literal[PipelineStage.BUILD] = PipelineStage.BUILD

    @classmethod
    def from_source(
        cls,
        state: SourceState,
        *,
        source_ref: str,
        baseline_revision: str,
        previous_version: str,
    ) -> BuildState:
        return cls(
            **_carry(state, _Triggered),
            source_ref=source_ref,
            baseline_revision=baseline_revision,
            previous_version=previous_version,
        )


class DeployState(_Versioned):
    stage: Literal[PipelineStage.DEPLOY] = PipelineStage.DEPLOY

    @classmethod
    def from_build(
        cls, state: BuildState, *, version: str, build_artifact_ref: str
    ) -> DeployState:
        return cls(
            **_carry(state, _CheckedOut),
            version=version,
            build_artifact_ref=build_artifact_ref,
        )


class ApproveState(_Staged):
    stage: Literal[PipelineStage.APPROVE] = PipelineStage.APPROVE
    approval_link: str = ""
    approval_requested_at: datetime | None = None

    @classmethod
    def from_deploy(
        cls,
        state: DeployState,
        *,
        staging: DistributionRecord,
        policy: ContinuousDeploymentPolicy,
    ) -> ApproveState:
        return cls(**_carry(state, _Versioned), staging=staging, policy=policy)


class PromoteState(_Staged):
    stage: Literal[PipelineStage.PROMOTE] = PipelineStage.PROMOTE
    approved_at: datetime = Field(default_factory=_now)

    @classmethod
    def from_approve(cls, state: ApproveState) -> PromoteState:
        return cls(**_carry(state, _Staged))


class CleanupOrDoneState(_Staged):
    stage: Literal[PipelineStage.CLEANUP_OR_DONE] = PipelineStage.CLEANUP_OR_DONE
    production_revision: str

    @classmethod
    def from_promote(
        cls, state: PromoteState, *, production_revision: str
    ) -> CleanupOrDoneState:
        return cls(
            **_carry(state, _Staged), production_revision=production_revision
        )


class DoneState(_Versioned):
    stage: Literal[PipelineStage.DONE] = PipelineStage.DONE
    production_revision: str
    staging_deleted: bool = False

    @classmethod
    def from_cleanup(
        cls, state: CleanupOrDoneState, *, staging_deleted: bool
    ) -> DoneState:
        return cls(
            **_carry(state, _Versioned),
            production_revision=state.production_revision,
            staging_deleted=staging_deleted,
        )


class RolledBackState(_Staged):
    stage: Literal[PipelineStage.ROLLED_BACK] = PipelineStage.ROLLED_BACK

    @classmethod
    def from_approve(cls, state: ApproveState) -> RolledBackState:
        return cls(**_carry(state, _Staged))


class FailedState(_StateBase):
    stage: Literal[PipelineStage.FAILED] = PipelineStage.FAILED
    failed_stage: PipelineStage
    error_code: str
    message: str = ""
    retryable: bool = False  # True only for a purge awaiting redelivery
    version: str = ""
    staging_id: str | None = None
    policy_id: str | None = None


RunState = Annotated[
    Union[
        IdleState,
        SourceState,
        BuildState,
        DeployState,
        ApproveState,
        PromoteState,
        CleanupOrDoneState,
        DoneState,
        RolledBackState,
        FailedState,
    ],
    Field(discriminator="stage"),
]


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


class StageResult(BaseModel):
    """What one stage execution reported."""

    model_config = ConfigDict(frozen=True)

    stage: PipelineStage
    outcome: StageOutcome
    artifact_ref: str = ""
    detail: str = ""
    recorded_at: datetime = Field(default_factory=_now)


class PipelineRun(BaseModel):
    """One execution of the pipeline for a service."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(
        default_factory=lambda: f"run-{datetime.now(timezone.utc):%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"
    )
    service: str
    state: RunState
    status: RunStatus = RunStatus.RUNNING
    results: list[StageResult] = []
    created_at: datetime = Field(default_factory=_now)

    @property
    def current_stage(self) -> PipelineStage:
        return self.state.stage

    @property
    def is_terminal(self) -> bool:
        """True once the run no longer holds the staging slot."""
        if self.status == RunStatus.RUNNING:
            return False
        if isinstance(self.state, FailedState) and self.state.retryable:
            return False
        return True

    def last_result(self, stage: PipelineStage) -> StageResult | None:
        for result in reversed(self.results):
            if result.stage == stage:
                return result
        return None
