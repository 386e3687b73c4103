"""Pipeline stage state machine: stages, outcomes, valid transitions."""

from __future__ import annotations

from enum import Enum


class PipelineStage(str, Enum):
    """Cursor positions of a pipeline run."""

    IDLE = "idle"
    SOURCE = "source"
    BUILD = "build"
    DEPLOY = "deploy"
    APPROVE = "approve"
    PROMOTE = "promote"
    CLEANUP_OR_DONE = "cleanup_or_done"
    DONE = "done"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Terminal-leaning status of a run."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PURGED = "purged"


class StageOutcome(str, Enum):
    """What a stage reported when it finished."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PROVISIONING_ERROR = "provisioning_error"
    CONFLICT = "conflict"
    DEPENDENCY_ERROR = "dependency_error"
    AGENT_FAILURE = "agent_failure"
    VERSION_EXISTS = "version_exists"
    APPROVAL_PENDING = "approval_pending"
    APPROVAL_ACCEPTED = "approval_accepted"
    APPROVAL_REJECTED = "approval_rejected"
    SKIPPED = "skipped"
    PURGED = "purged"
    PURGE_FAILED = "purge_failed"


# Valid cursor moves, enforced structurally by RunStateMachine.
# DONE has no outgoing edges; FAILED may only return to IDLE when the
# failure was a retryable purge.
VALID_TRANSITIONS: dict[PipelineStage, set[PipelineStage]] = {
    PipelineStage.IDLE: {PipelineStage.SOURCE},
    PipelineStage.SOURCE: {PipelineStage.BUILD, PipelineStage.FAILED},
    PipelineStage.BUILD: {PipelineStage.DEPLOY, PipelineStage.FAILED},
    PipelineStage.DEPLOY: {PipelineStage.APPROVE, PipelineStage.FAILED},
    PipelineStage.APPROVE: {PipelineStage.PROMOTE, PipelineStage.ROLLED_BACK},
    PipelineStage.PROMOTE: {PipelineStage.CLEANUP_OR_DONE, PipelineStage.FAILED},
    PipelineStage.CLEANUP_OR_DONE: {PipelineStage.DONE, PipelineStage.FAILED},
    PipelineStage.ROLLED_BACK: {PipelineStage.IDLE, PipelineStage.FAILED},
    PipelineStage.FAILED: {PipelineStage.IDLE},
    PipelineStage.DONE: set(),
}


STAGE_DISPLAY_NAMES: dict[PipelineStage, str] = {
    PipelineStage.IDLE: "Idle",
    PipelineStage.SOURCE: "Source",
    PipelineStage.BUILD: "Build",
    PipelineStage.DEPLOY: "Deploy",
    PipelineStage.APPROVE: "Approve",
    PipelineStage.PROMOTE: "Promote",
    PipelineStage.CLEANUP_OR_DONE: "Cleanup",
    PipelineStage.DONE: "Done",
    PipelineStage.ROLLED_BACK: "Rolled back",
    PipelineStage.FAILED: "Failed",
}
