"""Human-approval notification payloads."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class ApprovalRequest(BaseModel):
    """Outbound approval prompt: where to look, what to do, who decides."""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    service: str
    version: str
    staging_distribution_id: str
    link: str
    instructions: str
    recipients: list[str] = []
    header: str
    header_value: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
