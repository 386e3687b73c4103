"""MonitorProjection: pure read-only view over the RunLedger.

Every call re-reads the ledger; the projection keeps no state of its
own.  Once a run is terminal the ledger is the only record of it, so
this is also how finished runs are inspected.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from edgeswap.core.run_ledger import LedgerIntegrityError, RunLedger
from edgeswap.models.stages import STAGE_DISPLAY_NAMES, PipelineStage, RunStatus

# Rows shown for every run, in pipeline order.
DISPLAY_ORDER: tuple[PipelineStage, ...] = (
    PipelineStage.SOURCE,
    PipelineStage.BUILD,
    PipelineStage.DEPLOY,
    PipelineStage.APPROVE,
    PipelineStage.PROMOTE,
    PipelineStage.CLEANUP_OR_DONE,
    PipelineStage.ROLLED_BACK,
)


class StageRow(BaseModel):
    """Latest reported outcome of one stage, derived from the ledger."""

    model_config = ConfigDict(frozen=True)

    stage: PipelineStage
    display_name: str
    outcome: str = ""
    reported_at: datetime | None = None
    artifact_ref: str = ""
    detail: str = ""
    attempts: int = 0


class RunSnapshot(BaseModel):
    """A frozen, point-in-time snapshot of one run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    service: str = ""
    current_stage: PipelineStage = PipelineStage.IDLE
    status: RunStatus = RunStatus.RUNNING
    stages: list[StageRow] = []
    entry_count: int = 0
    chain_valid: bool = True
    started_at: datetime | None = None
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def reported_stages(self) -> list[StageRow]:
        return [row for row in self.stages if row.outcome]


class MonitorProjection:
    """Pure read-only projection over the RunLedger.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    def snapshot(self, run_id: str) -> RunSnapshot:
        """Rebuild the state of *run_id* from its ledger entries.

        A ledger entry whose transition is ``from->to`` carries the
        outcome of the ``from`` stage.
        """
        entries = self._ledger.get_run_entries(run_id)
        if not entries:
            return RunSnapshot(run_id=run_id)

        try:
            chain_valid = self._ledger.verify_chain(run_id)
        except LedgerIntegrityError:
            chain_valid = False

        rows: dict[PipelineStage, StageRow] = {
            stage: StageRow(stage=stage, display_name=STAGE_DISPLAY_NAMES[stage])
            for stage in DISPLAY_ORDER
        }
        for entry in entries:
            if not entry.outcome:
                continue
            from_stage = PipelineStage(entry.transition.split("->", 1)[0])
            previous = rows.get(from_stage)
            if previous is None:
                continue
            rows[from_stage] = previous.model_copy(
                update={
                    "outcome": entry.outcome,
                    "reported_at": entry.timestamp_utc,
                    "artifact_ref": entry.artifact_ref,
                    "detail": entry.detail,
                    "attempts": previous.attempts + 1,
                }
            )

        last = entries[-1]
        return RunSnapshot(
            run_id=run_id,
            service=last.service,
            current_stage=PipelineStage(last.stage),
            status=RunStatus(last.status) if last.status else RunStatus.RUNNING,
            stages=[rows[stage] for stage in DISPLAY_ORDER],
            entry_count=len(entries),
            chain_valid=chain_valid,
            started_at=entries[0].timestamp_utc,
        )

    def list_snapshots(self, service: str | None = None) -> list[RunSnapshot]:
        """Snapshots of every recorded run, most recent first."""
        return [
            self.snapshot(run_id)
            for run_id in self._ledger.get_all_run_ids(service)
        ]
