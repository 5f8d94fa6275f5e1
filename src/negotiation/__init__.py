"""Peer-to-peer call negotiation over a rendezvous channel.

Two parties that cannot yet reach each other exchange an offer, an answer and
a trickle of network candidates through a shared document store. This
package coordinates that exchange for the initiator and responder roles.
"""

from src.negotiation.call_record import CallRecord, CallRecordStore
from src.negotiation.client import CallClient
from src.negotiation.config import NegotiationConfig
from src.negotiation.coordinator import NegotiationCoordinator
from src.negotiation.errors import (
    CapturePermissionError,
    ChannelError,
    InvalidStateError,
    NegotiationError,
    NotFoundError,
    PeerConnectionError,
    PreconditionError,
)
from src.negotiation.session import NegotiationSession, NegotiationState
from src.negotiation.types import CandidateEntry, Role, SessionDescription

__all__ = [
    "CallClient",
    "CallRecord",
    "CallRecordStore",
    "CandidateEntry",
    "CapturePermissionError",
    "ChannelError",
    "InvalidStateError",
    "NegotiationConfig",
    "NegotiationCoordinator",
    "NegotiationError",
    "NegotiationSession",
    "NegotiationState",
    "NotFoundError",
    "PeerConnectionError",
    "PreconditionError",
    "Role",
    "SessionDescription",
]
