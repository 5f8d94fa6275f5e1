"""Error taxonomy for call negotiation.

Errors raised by a triggering operation propagate to its caller. Errors that
happen inside asynchronous callbacks (channel deliveries, connection events)
are recorded on the negotiation session instead of being raised.
"""


class NegotiationError(Exception):
    """Base class for all negotiation failures."""


class CapturePermissionError(NegotiationError, PermissionError):
    """Capture device denied access or could not provide the requested tracks."""


class PreconditionError(NegotiationError):
    """Action requested before its preconditions hold (e.g. no capture stream)."""


class NotFoundError(NegotiationError):
    """No call record, or no offer, exists for the requested call id."""


class ChannelError(NegotiationError, ConnectionError):
    """Rendezvous channel read or write failed."""


class InvalidStateError(NegotiationError):
    """Operation is not legal in the current negotiation state."""


class PeerConnectionError(NegotiationError):
    """The connection capability reported an unrecoverable failure."""


__all__ = [
    "NegotiationError",
    "CapturePermissionError",
    "PreconditionError",
    "NotFoundError",
    "ChannelError",
    "InvalidStateError",
    "PeerConnectionError",
]
