"""Pipeline stages: registry mapping each PipelineStage to its stage class.

Usage::

    from edgeswap.stages import get_stage

    stage = get_stage(PipelineStage.DEPLOY)
    new_state, result = stage.run_stage(run, ctx)
"""

from __future__ import annotations

from edgeswap.models.stages import PipelineStage
from edgeswap.stages.approve import ApproveStage
from edgeswap.stages.base import BaseStage, StageContext, StageExecutionError
from edgeswap.stages.build import BuildStage
from edgeswap.stages.cleanup import CleanupStage
from edgeswap.stages.deploy import DeployStage
from edgeswap.stages.promote import PromoteStage
from edgeswap.stages.source import SourceStage

# ---------------------------------------------------------------------------
# Stage registry: PipelineStage -> stage class
# ---------------------------------------------------------------------------

STAGE_REGISTRY: dict[PipelineStage, type[BaseStage]] = {
    PipelineStage.SOURCE: SourceStage,
    PipelineStage.BUILD: BuildStage,
    PipelineStage.DEPLOY: DeployStage,
    PipelineStage.APPROVE: ApproveStage,
    PipelineStage.PROMOTE: PromoteStage,
    PipelineStage.CLEANUP_OR_DONE: CleanupStage,
}

def get_stage(stage: PipelineStage) -> BaseStage:
    """Instantiate the stage class registered for *stage*.

    Raises ``KeyError`` for cursor positions that have no stage
    (idle, done, rolled back, failed).
    """
    try:
        cls = STAGE_REGISTRY[stage]
    except KeyError:
        raise KeyError(
            f"No stage registered for {stage.value!r}. "
            f"Registered: {sorted(s.value for s in STAGE_REGISTRY)}"
        ) from None
    return cls()


__all__ = [
    "BaseStage",
    "StageContext",
    "StageExecutionError",
    "STAGE_REGISTRY",
    "get_stage",
    "SourceStage",
    "BuildStage",
    "DeployStage",
    "ApproveStage",
    "PromoteStage",
    "CleanupStage",
]
