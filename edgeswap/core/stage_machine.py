"""Run state machine.

Enforces:
- Valid cursor moves only (VALID_TRANSITIONS table)
- Terminal runs never move again
- Every transition and every stage result recorded in the run ledger

``PipelineRun`` is frozen; every method returns the updated run.
"""

from __future__ import annotations

import logging

from edgeswap.core.run_ledger import RunLedger
from edgeswap.models.ledger import LedgerEntry
from edgeswap.models.run import PipelineRun, RunState, SourceState, StageResult
from edgeswap.models.stages import VALID_TRANSITIONS, RunStatus

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RunStateMachine:
    """Moves runs between stages and records every move.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    def start(self, run: PipelineRun) -> PipelineRun:
        """Record the creation of *run* (Idle -> Source)."""
        if not isinstance(run.state, SourceState):
            raise InvalidTransitionError(
                f"Run {run.run_id} must start in source, not {run.current_stage.value}"
            )
        self._ledger.append(
            LedgerEntry(
                run_id=run.run_id,
                service=run.service,
                stage=run.current_stage.value,
                transition=f"idle->{run.current_stage.value}",
                status=run.status.value,
                detail=f"{run.state.repository}@{run.state.branch}",
            )
        )
        logger.info("Run %s started for %s", run.run_id, run.service)
        return run

    def transition(
        self,
        run: PipelineRun,
        new_state: RunState,
        *,
        result: StageResult | None = None,
        status: RunStatus | None = None,
    ) -> PipelineRun:
        """Move *run* into *new_state*.

        *result* is the outcome of the stage being left; *status*
        overrides the run status (defaults to unchanged).

        Raises
        ------
        InvalidTransitionError
            If the move is not in ``VALID_TRANSITIONS``.
        """
        current = run.current_stage
        target = new_state.stage
        allowed = VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot move run {run.run_id} from {current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        new_status = status or run.status
        results = list(run.results)
        if result is not None:
            results.append(result)

        self._ledger.append(
            LedgerEntry(
                run_id=run.run_id,
                service=run.service,
                stage=target.value,
                transition=f"{current.value}->{target.value}",
                outcome=result.outcome.value if result else "",
                status=new_status.value,
                artifact_ref=result.artifact_ref if result else "",
                detail=result.detail if result else "",
            )
        )
        logger.info(
            "Run %s: %s -> %s (%s)",
            run.run_id,
            current.value,
            target.value,
            new_status.value,
        )
        return run.model_copy(
            update={"state": new_state, "status": new_status, "results": results}
        )

    def record(self, run: PipelineRun, result: StageResult) -> PipelineRun:
        """Record a stage result without moving the cursor.

        Used when a stage suspends (approval pending) or is held for a
        retry (provisioning error).
        """
        stage = run.current_stage.value
        self._ledger.append(
            LedgerEntry(
                run_id=run.run_id,
                service=run.service,
                stage=stage,
                transition=f"{stage}->{stage}",
                outcome=result.outcome.value,
                status=run.status.value,
                artifact_ref=result.artifact_ref,
                detail=result.detail,
            )
        )
        logger.info("Run %s: %s reported %s", run.run_id, stage, result.outcome.value)
        return run.model_copy(update={"results": [*run.results, result]})
