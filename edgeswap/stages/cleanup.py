"""Cleanup stage: tear down staging after a successful promote."""

from __future__ import annotations

from typing import ClassVar

from edgeswap.models.run import (
    CleanupOrDoneState,
    DoneState,
    PipelineRun,
    RunState,
    StageResult,
)
from edgeswap.models.stages import PipelineStage, StageOutcome
from edgeswap.stages.base import BaseStage, StageContext


class CleanupStage(BaseStage):
    """Cleanup: delete staging when the service's cleanup flag is on.

    With cleanup disabled the staging distribution and its (now
    disabled) policy stay in place and the config store keeps pointing
    at them; the next Deploy removes them.
    """

    stage: ClassVar[PipelineStage] = PipelineStage.CLEANUP_OR_DONE
    input_state: ClassVar[type] = CleanupOrDoneState

    def execute(
        self, run: PipelineRun, ctx: StageContext
    ) -> tuple[RunState, StageResult]:
        state: CleanupOrDoneState = run.state
        params = ctx.parameters.load()

        if not params.staging_cleanup_enabled:
            return DoneState.from_cleanup(state, staging_deleted=False), self.result(
                StageOutcome.SKIPPED, detail="staging cleanup disabled"
            )

        ctx.distributions.delete_staging(state.staging.id, state.policy.id)
        ctx.parameters.set_staging_distribution_id(None)
        return DoneState.from_cleanup(state, staging_deleted=True), self.result(
            artifact_ref=state.staging.id, detail="staging deleted"
        )
