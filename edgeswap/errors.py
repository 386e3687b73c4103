"""Error taxonomy for the rollout pipeline.

Every error raised by a stage or collaborator derives from
``DeploymentError`` and carries a stable ``error_code`` that the
orchestrator records as the stage outcome.  Approval rejection is NOT
in this module: it is an expected business outcome, modelled by
``ApprovalOutcome.REJECTED``.
"""

from __future__ import annotations

from typing import ClassVar


class DeploymentError(RuntimeError):
    """Base class for all rollout failures."""

    error_code: ClassVar[str] = "deployment_error"


class ProvisioningError(DeploymentError):
    """Staging creation failed; the Deploy stage may be retried.

    Raised when the object-store prefix for a version does not exist yet,
    or when the edge provider refuses to create the staging distribution.
    """

    error_code: ClassVar[str] = "provisioning_error"


class ConflictError(DeploymentError):
    """Production changed since the run started; Promote must not proceed.

    Never retried automatically: a blind retry could overwrite an
    unrelated concurrent change.
    """

    error_code: ClassVar[str] = "conflict"

    def __init__(self, message: str, *, expected: str = "", actual: str = "") -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class DependencyError(DeploymentError):
    """A distribution was deleted while a policy was still attached to it."""

    error_code: ClassVar[str] = "dependency_error"


class AgentFailure(DeploymentError):
    """The build/execution agent exited nonzero."""

    error_code: ClassVar[str] = "agent_failure"

    def __init__(self, stage_name: str, exit_code: int, output: str = "") -> None:
        super().__init__(
            f"Agent step {stage_name!r} exited with code {exit_code}"
        )
        self.stage_name = stage_name
        self.exit_code = exit_code
        self.output = output


class VersionExistsError(DeploymentError):
    """A build produced a version id that is already published.

    Versions are immutable once created, so the build is refused rather
    than overwriting or reusing the objects of an earlier build.
    """

    error_code: ClassVar[str] = "version_exists"


class ParameterNotFoundError(DeploymentError):
    """A config store key does not exist."""

    error_code: ClassVar[str] = "parameter_not_found"


class ObjectNotFoundError(DeploymentError):
    """An object-store path does not exist."""

    error_code: ClassVar[str] = "object_not_found"


class ResourceNotFoundError(DeploymentError):
    """An edge resource (distribution or policy) does not exist."""

    error_code: ClassVar[str] = "resource_not_found"


class PreconditionFailedError(DeploymentError):
    """A conditional edge update was rejected because the revision moved."""

    error_code: ClassVar[str] = "precondition_failed"


class EventValidationError(DeploymentError):
    """An event payload on the bus failed schema validation."""

    error_code: ClassVar[str] = "event_validation_error"
