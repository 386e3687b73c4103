"""Sink protocol for approval notifications.

All sinks implement the ``BaseSink`` protocol: a ``sink_name`` property
and an ``accept(request)`` method.  The dispatcher calls ``accept`` on
every registered sink for every approval request.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from edgeswap.models.notifications import ApprovalRequest


@runtime_checkable
class BaseSink(Protocol):
    """Protocol that every notification sink must implement.

    Attributes
    ----------
    sink_name : str
        A unique human-readable identifier for this sink instance
        (e.g. ``"email"``, ``"local_file"``).
    """

    @property
    def sink_name(self) -> str:
        """Return the unique name of this sink."""
        ...

    def accept(self, request: ApprovalRequest) -> None:
        """Deliver or persist *request*.

        Critical failures may raise; the dispatcher logs them and
        continues with the next sink.
        """
        ...
