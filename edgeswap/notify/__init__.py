"""Human approval channel: gateway, sink dispatcher and sinks."""

from edgeswap.notify.dispatcher import SinkDispatcher, SinkDispatchError
from edgeswap.notify.gateway import NotificationGateway
from edgeswap.notify.sinks import BaseSink
from edgeswap.notify.sinks.email import EmailPayload, EmailSink
from edgeswap.notify.sinks.local_file import LocalFileSink

__all__ = [
    "BaseSink",
    "EmailPayload",
    "EmailSink",
    "LocalFileSink",
    "NotificationGateway",
    "SinkDispatchError",
    "SinkDispatcher",
]
