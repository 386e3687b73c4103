"""edgeswap data models: all Pydantic v2, all frozen (immutable)."""

from edgeswap.models.deployment import (
    ContinuousDeploymentPolicy,
    DistributionRecord,
    DistributionRole,
    SingleHeaderPredicate,
)
from edgeswap.models.events import (
    ApprovalOutcome,
    ApprovalStateChangedEvent,
    EventBase,
    EventKind,
    PurgeCompletedEvent,
    PurgeFailedEvent,
    PurgeRequestedEvent,
    SourceChangedEvent,
)
from edgeswap.models.ledger import LedgerEntry
from edgeswap.models.notifications import ApprovalRequest
from edgeswap.models.parameters import STAGING_NONE, DeploymentParameters, ParameterPaths
from edgeswap.models.run import (
    ApproveState,
    BuildState,
    CleanupOrDoneState,
    DeployState,
    DoneState,
    FailedState,
    IdleState,
    PipelineRun,
    PromoteState,
    RolledBackState,
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

__all__ = [
    # deployment
    "DistributionRole",
    "DistributionRecord",
    "SingleHeaderPredicate",
    "ContinuousDeploymentPolicy",
    # parameters
    "STAGING_NONE",
    "ParameterPaths",
    "DeploymentParameters",
    # stages
    "PipelineStage",
    "RunStatus",
    "StageOutcome",
    "VALID_TRANSITIONS",
    # run
    "RunState",
    "IdleState",
    "SourceState",
    "BuildState",
    "DeployState",
    "ApproveState",
    "PromoteState",
    "CleanupOrDoneState",
    "DoneState",
    "RolledBackState",
    "FailedState",
    "StageResult",
    "PipelineRun",
    # events
    "EventKind",
    "EventBase",
    "ApprovalOutcome",
    "SourceChangedEvent",
    "ApprovalStateChangedEvent",
    "PurgeRequestedEvent",
    "PurgeCompletedEvent",
    "PurgeFailedEvent",
    # notifications
    "ApprovalRequest",
    # ledger
    "LedgerEntry",
]
