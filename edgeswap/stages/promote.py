"""Promote stage: the only place production is written."""

from __future__ import annotations

from typing import ClassVar

from edgeswap.models.run import (
    CleanupOrDoneState,
    PipelineRun,
    PromoteState,
    RunState,
    StageResult,
)
from edgeswap.models.stages import PipelineStage
from edgeswap.stages.base import BaseStage, StageContext


class PromoteStage(BaseStage):
    """Promote: compare-and-swap staging config onto production."""

    stage: ClassVar[PipelineStage] = PipelineStage.PROMOTE
    input_state: ClassVar[type] = PromoteState

    def execute(
        self, run: PipelineRun, ctx: StageContext
    ) -> tuple[RunState, StageResult]:
        state: PromoteState = run.state
        revision = ctx.distributions.promote(state.policy, state.baseline_revision)
        ctx.parameters.set_frontend_version(state.version)

        new_state = CleanupOrDoneState.from_promote(state, production_revision=revision)
        return new_state, self.result(
            artifact_ref=revision,
            detail=f"{state.previous_version} -> {state.version}",
        )
