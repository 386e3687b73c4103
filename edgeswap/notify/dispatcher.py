"""SinkDispatcher: fans every approval request out to ALL sinks.

A failure in one sink does not prevent delivery to the others.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from edgeswap.models.notifications import ApprovalRequest

if TYPE_CHECKING:
    from edgeswap.notify.sinks import BaseSink

logger = logging.getLogger(__name__)


class SinkDispatchError(RuntimeError):
    """Raised when every registered sink failed."""


class SinkDispatcher:
    """Routes approval requests to every configured sink.

    Usage
    -----
    >>> dispatcher = SinkDispatcher()
    >>> dispatcher.register_sink(EmailSink(sender="ops@example.com"))
    >>> dispatcher.dispatch(request)
    """

    def __init__(self) -> None:
        self._sinks: list[BaseSink] = []

    def register_sink(self, sink: BaseSink) -> None:
        """Register a sink.  Registering the same instance twice is ignored."""
        if sink not in self._sinks:
            self._sinks.append(sink)
            logger.info("Registered sink: %s", sink.sink_name)

    @property
    def registered_sinks(self) -> list[BaseSink]:
        return list(self._sinks)

    def dispatch(self, request: ApprovalRequest) -> list[str]:
        """Deliver *request* to every sink and return the names that took it.

        Raises
        ------
        SinkDispatchError
            If *all* sinks fail.  Individual failures are tolerated.
        """
        if not self._sinks:
            logger.warning(
                "No sinks registered; approval request %s not delivered",
                request.request_id,
            )
            return []

        succeeded: list[str] = []
        errors: list[tuple[str, Exception]] = []
        for sink in self._sinks:
            try:
                sink.accept(request)
                succeeded.append(sink.sink_name)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Sink %s failed for request %s: %s",
                    sink.sink_name,
                    request.request_id,
                    exc,
                )
                errors.append((sink.sink_name, exc))

        if errors and not succeeded:
            raise SinkDispatchError(
                f"All {len(errors)} sinks failed for request {request.request_id}: "
                + "; ".join(f"{name}: {exc}" for name, exc in errors)
            )
        if errors:
            logger.warning(
                "Request %s: %d/%d sinks succeeded",
                request.request_id,
                len(succeeded),
                len(self._sinks),
            )
        return succeeded
