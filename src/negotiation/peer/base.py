"""Connection capability abstraction.

The negotiation core treats the peer connection as an opaque capability: it
produces and accepts session descriptions and candidates, and reports
discovered candidates, received tracks and connection state changes. ICE,
DTLS and SRTP live entirely behind this interface.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from src.negotiation.subscription import Subscription
from src.negotiation.types import CandidatePayload, SessionDescription

CONNECTED = "connected"
FAILED = "failed"
CLOSED = "closed"


class PeerConnection(ABC):
    """Base class for connection capability implementations."""

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        """Produce an offer from the currently attached tracks."""

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        """Produce an answer to the applied remote offer."""

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        """Commit a local description; candidate discovery starts here."""

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        """Apply the remote peer's description."""

    @abstractmethod
    def add_track(self, track: Any) -> None:
        """Attach a local media track."""

    @abstractmethod
    async def add_ice_candidate(self, payload: CandidatePayload) -> None:
        """Apply a remote candidate.

        Raises:
            ValueError: If the payload cannot be parsed
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the connection and all its transports."""

    @property
    @abstractmethod
    def connection_state(self) -> str:
        """Current connection state (new, connecting, connected, failed, closed)."""

    @abstractmethod
    def on_candidate(
        self, callback: Callable[[CandidatePayload | None], None]
    ) -> Subscription:
        """Subscribe to candidate discovery; None signals end-of-candidates."""

    @abstractmethod
    def on_track(self, callback: Callable[[Any], None]) -> Subscription:
        """Subscribe to remote tracks."""

    @abstractmethod
    def on_connection_state_change(self, callback: Callable[[str], None]) -> Subscription:
        """Subscribe to connection state changes."""
