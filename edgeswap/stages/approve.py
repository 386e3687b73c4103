"""Approve stage: prompt humans, then suspend.

The stage never blocks waiting for a decision.  It dispatches the
approval request and hands the run back to the orchestrator, which
resumes it when an approval event arrives.
"""

from __future__ import annotations

from typing import ClassVar

from edgeswap.models.run import ApproveState, PipelineRun, RunState, StageResult
from edgeswap.models.stages import PipelineStage, StageOutcome
from edgeswap.stages.base import BaseStage, StageContext


class ApproveStage(BaseStage):
    """Approve: human gate on the staging distribution."""

    stage: ClassVar[PipelineStage] = PipelineStage.APPROVE
    input_state: ClassVar[type] = ApproveState

    def execute(
        self, run: PipelineRun, ctx: StageContext
    ) -> tuple[RunState, StageResult]:
        state: ApproveState = run.state
        request = ctx.gateway.request_approval(run, state.staging, state.policy.predicate)
        new_state = state.model_copy(
            update={
                "approval_link": request.link,
                "approval_requested_at": request.created_at,
            }
        )
        return new_state, self.result(
            StageOutcome.APPROVAL_PENDING,
            artifact_ref=request.request_id,
            detail=request.link,
        )
