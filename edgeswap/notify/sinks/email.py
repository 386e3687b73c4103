"""Email notification sink: builds approval email payloads.

Actual SMTP delivery is left to a transport layer; this sink only
builds one payload per recipient and buffers it until ``flush()``.
"""

from __future__ import annotations

import html
import logging

from pydantic import BaseModel, ConfigDict

from edgeswap.models.notifications import ApprovalRequest
from edgeswap.notify.sinks._formatting import detail_lines, format_subject

logger = logging.getLogger(__name__)


class EmailPayload(BaseModel):
    """An email notification payload ready for SMTP delivery."""

    model_config = ConfigDict(frozen=True)

    recipient: str
    sender: str
    subject: str
    body_text: str
    body_html: str = ""
    headers: dict[str, str] = {}


class EmailSink:
    """Builds approval emails for every recipient on the request.

    Parameters
    ----------
    sender:
        The sender address.
    fallback_recipients:
        Used when a request carries no recipients of its own.
    """

    def __init__(
        self,
        sender: str = "edgeswap@localhost",
        fallback_recipients: list[str] | None = None,
    ) -> None:
        self._sender = sender
        self._fallback = list(fallback_recipients or [])
        self._pending_payloads: list[EmailPayload] = []

    @property
    def sink_name(self) -> str:
        return "email"

    def accept(self, request: ApprovalRequest) -> None:
        recipients = request.recipients or self._fallback
        if not recipients:
            raise ValueError(f"No recipients for approval request {request.request_id}")

        subject = format_subject(request)
        body_text = self._format_body_text(request)
        body_html = self._format_body_html(request)
        for recipient in recipients:
            self._pending_payloads.append(
                EmailPayload(
                    recipient=recipient,
                    sender=self._sender,
                    subject=subject,
                    body_text=body_text,
                    body_html=body_html,
                    headers={
                        "X-Edgeswap-Run-Id": request.run_id,
                        "X-Edgeswap-Request-Id": request.request_id,
                    },
                )
            )
        logger.debug(
            "EmailSink: queued %d email(s) for request %s",
            len(recipients),
            request.request_id,
        )

    def flush(self) -> list[EmailPayload]:
        """Return and clear all pending payloads."""
        payloads = list(self._pending_payloads)
        self._pending_payloads.clear()
        return payloads

    @property
    def pending_count(self) -> int:
        return len(self._pending_payloads)

    @staticmethod
    def _format_body_text(request: ApprovalRequest) -> str:
        lines = [
            "Staging deployment awaiting approval",
            "=" * 40,
            *detail_lines(request),
            "",
            request.instructions,
            "",
            "-- edgeswap rollout pipeline",
        ]
        return "\n".join(lines)

    @staticmethod
    def _format_body_html(request: ApprovalRequest) -> str:
        rows = "\n".join(
            f"<tr><td><b>{html.escape(label.strip())}</b></td>"
            f"<td><code>{html.escape(value.strip())}</code></td></tr>"
            for label, value in (line.split(":", 1) for line in detail_lines(request))
        )
        return (
            "<h2>Staging deployment awaiting approval</h2>\n"
            f"<table>\n{rows}\n</table>\n"
            f"<p>{html.escape(request.instructions)}</p>\n"
            f'<p><a href="{html.escape(request.link)}">Open staging distribution</a></p>'
        )
