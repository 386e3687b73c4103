"""Deploy stage: publish the build and stand up the staging distribution.

Order matters:

1. tear down any staging left behind by an earlier run,
2. publish the build output under ``{version}/``,
3. run the agent's deploy hook,
4. create staging (fails with ``ProvisioningError`` if nothing was published),
5. record the staging id in the config store,
6. bind the single-header policy.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import ClassVar

from edgeswap.core.object_store import publish_directory
from edgeswap.models.deployment import ContinuousDeploymentPolicy
from edgeswap.models.parameters import DeploymentParameters
from edgeswap.models.run import ApproveState, DeployState, PipelineRun, RunState, StageResult
from edgeswap.models.stages import PipelineStage
from edgeswap.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)


class DeployStage(BaseStage):
    """Deploy: staging distribution plus header-routed policy."""

    stage: ClassVar[PipelineStage] = PipelineStage.DEPLOY
    input_state: ClassVar[type] = DeployState

    def execute(
        self, run: PipelineRun, ctx: StageContext
    ) -> tuple[RunState, StageResult]:
        state: DeployState = run.state
        params = ctx.parameters.load()

        self._teardown_stale(ctx, params)

        if state.build_artifact_ref and Path(state.build_artifact_ref).is_dir():
            publish_directory(ctx.objects, state.version, Path(state.build_artifact_ref))

        env = params.agent_environment(ctx.service)
        env["REACT_APP_VERSION_FRONTEND"] = state.version
        self.run_agent(ctx, "deploy", env)

        staging = ctx.distributions.create_staging(
            state.version, production_id=params.production_distribution_id
        )
        ctx.parameters.set_staging_distribution_id(staging.id)

        production = ctx.distributions.describe(params.production_distribution_id)
        policy = ctx.distributions.bind_policy(
            staging, production, params.single_header_predicate
        )

        new_state = ApproveState.from_deploy(state, staging=staging, policy=policy)
        return new_state, self.result(
            artifact_ref=staging.id, detail=f"policy {policy.id}"
        )

    @staticmethod
    def _teardown_stale(ctx: StageContext, params: DeploymentParameters) -> None:
        """Delete staging resources recorded by an earlier run, if any."""
        policy: ContinuousDeploymentPolicy | None = ctx.distributions.current_policy(
            params.production_distribution_id
        )
        if policy is None and not params.has_staging:
            return

        if policy is not None:
            logger.warning(
                "Removing stale policy %s and staging %s", policy.id, policy.staging_id
            )
            ctx.distributions.delete_staging(policy.staging_id, policy.id)
        if params.has_staging and (
            policy is None or policy.staging_id != params.staging_distribution_id
        ):
            logger.warning("Removing stale staging %s", params.staging_distribution_id)
            ctx.distributions.delete_staging(params.staging_distribution_id, None)
        ctx.parameters.set_staging_distribution_id(None)
