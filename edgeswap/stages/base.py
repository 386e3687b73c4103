"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only
``execute()``.  The ``run_stage()`` wrapper is **not overridable**:

    check input state -> execute -> log outcome

``DeploymentError`` subclasses raised by ``execute()`` propagate
unchanged so the orchestrator can map their ``error_code`` onto the
run; anything else is wrapped in ``StageExecutionError``.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, final

from edgeswap.core.agent import AgentResult, ExecutionAgent
from edgeswap.core.config_store import ParameterRepository
from edgeswap.core.distribution import DistributionManager
from edgeswap.core.object_store import ObjectStore
from edgeswap.errors import AgentFailure, DeploymentError
from edgeswap.models.run import PipelineRun, RunState, StageResult
from edgeswap.models.stages import STAGE_DISPLAY_NAMES, PipelineStage, StageOutcome

if TYPE_CHECKING:
    from edgeswap.notify.gateway import NotificationGateway

logger = logging.getLogger(__name__)


class StageExecutionError(DeploymentError):
    """Raised when a stage's execute() fails with an unexpected error."""

    error_code: ClassVar[str] = "stage_error"


@dataclass(frozen=True)
class StageContext:
    """Collaborators shared by every stage of one service's pipeline."""

    service: str
    parameters: ParameterRepository
    distributions: DistributionManager
    objects: ObjectStore
    agent: ExecutionAgent
    gateway: NotificationGateway


class BaseStage(abc.ABC):
    """Abstract base for all pipeline stages.

    Subclasses **must** set ``stage`` and ``input_state`` and implement
    ``execute(run, ctx)``, which returns the successor state and the
    stage result.  Subclasses **must not** override ``run_stage()``.
    """

    stage: ClassVar[PipelineStage]
    input_state: ClassVar[type]

    @property
    def display_name(self) -> str:
        return STAGE_DISPLAY_NAMES[self.stage]

    @abc.abstractmethod
    def execute(
        self, run: PipelineRun, ctx: StageContext
    ) -> tuple[RunState, StageResult]:
        """Run the stage's core logic against ``run.state``."""
        ...

    # ------------------------------------------------------------------
    # Lifecycle: NOT overridable
    # ------------------------------------------------------------------

    @final
    def run_stage(
        self, run: PipelineRun, ctx: StageContext
    ) -> tuple[RunState, StageResult]:
        """Execute the stage.  **Do not override.**"""
        if not isinstance(run.state, self.input_state):
            raise StageExecutionError(
                f"{self.display_name} cannot run from {run.current_stage.value}"
            )

        logger.info("%s [%s] starting for run %s", self.display_name, ctx.service, run.run_id)
        try:
            new_state, result = self.execute(run, ctx)
        except DeploymentError as exc:
            logger.error(
                "%s [%s] failed (%s): %s",
                self.display_name,
                ctx.service,
                exc.error_code,
                exc,
            )
            raise
        except Exception as exc:
            logger.error(
                "%s [%s] execution failed: %s", self.display_name, ctx.service, exc
            )
            raise StageExecutionError(
                f"Stage {self.stage.value} failed: {exc}"
            ) from exc

        logger.info(
            "%s [%s] %s%s",
            self.display_name,
            ctx.service,
            result.outcome.value,
            f" ({result.artifact_ref})" if result.artifact_ref else "",
        )
        return new_state, result

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def result(
        self,
        outcome: StageOutcome = StageOutcome.SUCCEEDED,
        *,
        artifact_ref: str = "",
        detail: str = "",
    ) -> StageResult:
        return StageResult(
            stage=self.stage, outcome=outcome, artifact_ref=artifact_ref, detail=detail
        )

    @staticmethod
    def run_agent(
        ctx: StageContext, step: str, env: dict[str, str]
    ) -> AgentResult:
        """Run one agent step; a nonzero exit raises ``AgentFailure``."""
        outcome = ctx.agent.run(step, env)
        if not outcome.succeeded:
            raise AgentFailure(step, outcome.exit_code, outcome.output)
        return outcome

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage={self.stage.value!r}>"
