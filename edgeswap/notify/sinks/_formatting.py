"""Shared formatting helpers for approval notification sinks."""

from __future__ import annotations

from edgeswap.models.notifications import ApprovalRequest


def format_subject(request: ApprovalRequest) -> str:
    return (
        f"[edgeswap] Approval needed: {request.service} {request.version} "
        f"on staging {request.staging_distribution_id}"
    )


def detail_lines(request: ApprovalRequest) -> list[str]:
    """``"Label: value"`` lines describing the request."""
    return [
        f"Service:   {request.service}",
        f"Run ID:    {request.run_id}",
        f"Version:   {request.version}",
        f"Staging:   {request.staging_distribution_id}",
        f"Header:    {request.header}: {request.header_value}",
        f"Link:      {request.link}",
        f"Requested: {request.created_at.isoformat()}",
    ]
