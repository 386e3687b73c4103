"""Build stage: produce a new immutable Version and its build output."""

from __future__ import annotations

from typing import ClassVar

from edgeswap.core.agent import bump_version
from edgeswap.core.object_store import version_prefix
from edgeswap.errors import VersionExistsError
from edgeswap.models.run import BuildState, DeployState, PipelineRun, RunState, StageResult
from edgeswap.models.stages import PipelineStage
from edgeswap.stages.base import BaseStage, StageContext


class BuildStage(BaseStage):
    """Build: the agent compiles the frontend for the next version.

    The proposed version is the last one any build claimed, bumped by
    one, and is handed to the agent as ``REACT_APP_VERSION_FRONTEND``;
    an agent that reports its own version overrides the proposal.  The
    proposal is recorded in the config store before the agent runs, so
    a failed, refused or rejected build never frees its id for reuse.
    """

    stage: ClassVar[PipelineStage] = PipelineStage.BUILD
    input_state: ClassVar[type] = BuildState

    def execute(
        self, run: PipelineRun, ctx: StageContext
    ) -> tuple[RunState, StageResult]:
        state: BuildState = run.state
        params = ctx.parameters.load()
        proposed = bump_version(params.version_base)
        ctx.parameters.set_last_built_version(proposed)

        env = params.agent_environment(ctx.service)
        env["REACT_APP_VERSION_FRONTEND"] = proposed
        env["SOURCE_REF"] = state.source_ref
        output = self.run_agent(ctx, "build", env)

        version = output.version or proposed
        if ctx.objects.exists_prefix(version_prefix(version)):
            raise VersionExistsError(
                f"Version {version!r} is already published; refusing to rebuild it"
            )
        if version != proposed:
            ctx.parameters.set_last_built_version(version)

        new_state = DeployState.from_build(
            state, version=version, build_artifact_ref=output.output_artifact_ref
        )
        return new_state, self.result(
            artifact_ref=output.output_artifact_ref, detail=f"version {version}"
        )
