"""Run ledger entry model (append-only, hash-chained).

One entry per run transition.  A run is archived into the ledger as it
goes; once terminal, the ledger is the only record of it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only run ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    service: str
    stage: str  # PipelineStage value the run moved into
    transition: str  # "from_stage->to_stage"
    outcome: str = ""  # StageOutcome value, if a stage reported one
    status: str = ""  # RunStatus value after the transition
    artifact_ref: str = ""
    detail: str = ""
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed after construction, seals this entry
