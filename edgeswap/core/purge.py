"""Rollback/Purge Controller: tears down staging after a rejected approval.

The controller is driven only by ``PurgeRequestedEvent`` on the event
bus, never called by the Approve stage.  Handling the same request
twice converges on the same end state: already-deleted resources count
as deleted and a repeated ``PurgeCompletedEvent`` is ignored by the
orchestrator.
"""

from __future__ import annotations

import logging

from edgeswap.core.config_store import ParameterRepository
from edgeswap.core.distribution import DistributionManager
from edgeswap.core.event_bus import EventBus
from edgeswap.errors import DeploymentError
from edgeswap.models.events import (
    EventBase,
    EventKind,
    PurgeCompletedEvent,
    PurgeFailedEvent,
    PurgeRequestedEvent,
)

logger = logging.getLogger(__name__)


class PurgeController:
    """Subscribes to purge requests for one service.

    Parameters
    ----------
    bus:
        Event channel to subscribe on and publish outcomes to.
    distributions:
        Deletes the staging distribution and its policy.
    parameters:
        Config store view whose staging key is reset to ``"none"``.
    """

    def __init__(
        self,
        bus: EventBus,
        distributions: DistributionManager,
        parameters: ParameterRepository,
    ) -> None:
        self._bus = bus
        self._distributions = distributions
        self._parameters = parameters
        bus.subscribe(EventKind.PURGE_REQUESTED, self._on_event)

    def _on_event(self, event: EventBase) -> None:
        if isinstance(event, PurgeRequestedEvent):
            self.purge(event)

    def purge(self, event: PurgeRequestedEvent) -> None:
        """Delete staging, reset the staging key, report the outcome.

        On failure a ``PurgeFailedEvent`` is published and the error is
        re-raised so the bus redelivers the request.
        """
        if event.service != self._parameters.service:
            logger.debug("Ignoring purge for service %s", event.service)
            return

        logger.info(
            "Purging run %s (staging=%s, policy=%s)",
            event.run_id,
            event.staging_id,
            event.policy_id,
        )
        try:
            self._distributions.delete_staging(event.staging_id, event.policy_id)
            params = self._parameters.load()
            stale_key = params.has_staging and event.staging_id not in (
                None,
                params.staging_distribution_id,
            )
            if params.has_staging and not stale_key:
                self._parameters.set_staging_distribution_id(None)
            elif stale_key:
                logger.warning(
                    "Staging key points at %s, not %s; leaving it",
                    params.staging_distribution_id,
                    event.staging_id,
                )
        except DeploymentError as exc:
            logger.error("Purge of run %s failed: %s", event.run_id, exc)
            self._bus.publish(
                PurgeFailedEvent(
                    service=event.service,
                    run_id=event.run_id,
                    error_code=exc.error_code,
                    error_message=str(exc),
                    staging_id=event.staging_id,
                    policy_id=event.policy_id,
                )
            )
            raise

        self._bus.publish(
            PurgeCompletedEvent(
                service=event.service, run_id=event.run_id, version=event.version
            )
        )
        logger.info("Purge of run %s complete", event.run_id)
