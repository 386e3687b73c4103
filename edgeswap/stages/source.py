"""Source stage: check out the change and snapshot production.

The production config revision captured here is the baseline that
Promote's compare-and-swap checks against.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from edgeswap.models.run import BuildState, PipelineRun, RunState, SourceState, StageResult
from edgeswap.models.stages import PipelineStage
from edgeswap.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)


class SourceStage(BaseStage):
    """Source: checkout plus production baseline."""

    stage: ClassVar[PipelineStage] = PipelineStage.SOURCE
    input_state: ClassVar[type] = SourceState

    def execute(
        self, run: PipelineRun, ctx: StageContext
    ) -> tuple[RunState, StageResult]:
        state: SourceState = run.state
        params = ctx.parameters.load()

        env = params.agent_environment(ctx.service)
        env.update(
            {
                "SOURCE_REPOSITORY": state.repository,
                "SOURCE_BRANCH": state.branch,
                "SOURCE_COMMIT_ID": state.commit_id,
            }
        )
        checkout = self.run_agent(ctx, "source", env)
        source_ref = (
            checkout.output_artifact_ref
            or state.commit_id
            or f"{state.repository}@{state.branch}"
        )

        production = ctx.distributions.describe(params.production_distribution_id)
        logger.debug(
            "Baseline for run %s: %s at revision %s serving %s",
            run.run_id,
            production.id,
            production.config_revision,
            production.served_version,
        )

        new_state = BuildState.from_source(
            state,
            source_ref=source_ref,
            baseline_revision=production.config_revision,
            previous_version=production.served_version,
        )
        return new_state, self.result(
            artifact_ref=source_ref,
            detail=f"baseline {production.config_revision}",
        )
