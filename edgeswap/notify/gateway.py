"""Notification Gateway: the human approval channel.

Outbound, ``request_approval`` builds an ``ApprovalRequest`` (console
link, test instructions, recipients) and fans it out to every sink.
Inbound, ``decide`` turns a human's decision into an
``ApprovalStateChangedEvent`` on the event bus.
"""

from __future__ import annotations

import logging

from edgeswap.config import DEFAULT_CONSOLE_URL_TEMPLATE
from edgeswap.core.event_bus import EventBus
from edgeswap.models.deployment import DistributionRecord, SingleHeaderPredicate
from edgeswap.models.events import ApprovalOutcome, ApprovalStateChangedEvent
from edgeswap.models.notifications import ApprovalRequest
from edgeswap.models.run import ApproveState, PipelineRun
from edgeswap.notify.dispatcher import SinkDispatcher

logger = logging.getLogger(__name__)

INSTRUCTIONS_TEMPLATE = (
    'Access the staging distribution with the "{header}: {value}" request '
    "header and test your application. Once approved, the production "
    "distribution configuration will be overridden with staging configuration."
)


class NotificationGateway:
    """Approval requests out, approval decisions in.

    Parameters
    ----------
    dispatcher:
        Fans requests out to the configured sinks.
    bus:
        Receives ``ApprovalStateChangedEvent`` from ``decide``.
    service:
        Service the gateway speaks for.
    recipients:
        Who is asked to decide.
    console_url_template:
        Link template with a ``{distribution_id}`` placeholder.
    """

    def __init__(
        self,
        dispatcher: SinkDispatcher,
        bus: EventBus,
        *,
        service: str,
        recipients: list[str] | None = None,
        console_url_template: str = DEFAULT_CONSOLE_URL_TEMPLATE,
    ) -> None:
        self._dispatcher = dispatcher
        self._bus = bus
        self._service = service
        self._recipients = list(recipients or [])
        self._url_template = console_url_template

    def build_request(
        self,
        run: PipelineRun,
        staging: DistributionRecord,
        predicate: SingleHeaderPredicate,
    ) -> ApprovalRequest:
        version = run.state.version if isinstance(run.state, ApproveState) else ""
        return ApprovalRequest(
            run_id=run.run_id,
            service=self._service,
            version=version,
            staging_distribution_id=staging.id,
            link=self._url_template.format(distribution_id=staging.id),
            instructions=INSTRUCTIONS_TEMPLATE.format(
                header=predicate.header, value=predicate.value
            ),
            recipients=self._recipients,
            header=predicate.header,
            header_value=predicate.value,
        )

    def request_approval(
        self,
        run: PipelineRun,
        staging: DistributionRecord,
        predicate: SingleHeaderPredicate,
    ) -> ApprovalRequest:
        """Build the approval request and deliver it to every sink."""
        request = self.build_request(run, staging, predicate)
        delivered = self._dispatcher.dispatch(request)
        logger.info(
            "Approval requested for run %s (%s) via %s",
            run.run_id,
            request.version,
            ", ".join(delivered) or "no sinks",
        )
        return request

    def decide(
        self,
        run_id: str,
        outcome: ApprovalOutcome,
        *,
        decided_by: str = "",
        comment: str = "",
    ) -> str:
        """Publish a human decision and return the event id."""
        event = ApprovalStateChangedEvent(
            service=self._service,
            run_id=run_id,
            outcome=outcome,
            decided_by=decided_by,
            comment=comment,
        )
        logger.info("Approval decision for run %s: %s", run_id, outcome.value)
        return self._bus.publish(event)
