"""User-facing call surface.

Exposes what a UI layer needs: acquire the local stream, create or join a
call, hang up, and read the current call id, negotiation state, last error
and busy flag. Each call gets a fresh coordinator and connection; a torn-down
call is never resumed.
"""

import logging
from collections.abc import Callable
from typing import Any

from src.negotiation.capture import CaptureDevice, MediaStream
from src.negotiation.channel.base import RendezvousChannel
from src.negotiation.config import NegotiationConfig
from src.negotiation.coordinator import NegotiationCoordinator
from src.negotiation.errors import InvalidStateError, PreconditionError
from src.negotiation.peer.base import PeerConnection
from src.negotiation.session import NegotiationState
from src.negotiation.types import Role

logger = logging.getLogger(__name__)


class CallClient:
    """One participant's view of a two-party call.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        config: NegotiationConfig,
        channel: RendezvousChannel,
        peer_factory: Callable[[], PeerConnection],
        capture: CaptureDevice,
    ) -> None:
        """Initialize call client.

        Args:
            config: Negotiation configuration
            channel: Rendezvous channel
            peer_factory: Creates a fresh connection capability per call
            capture: Local capture device
        """
        self.config = config
        self.channel = channel
        self.peer_factory = peer_factory
        self.capture = capture

        self.local_stream: MediaStream | None = None
        self.error: Exception | None = None
        self.loading = False
        self.coordinator: NegotiationCoordinator | None = None
        self._track_callbacks: list[Callable[[Any], None]] = []

    @property
    def call_id(self) -> str | None:
        return self.coordinator.call_id if self.coordinator is not None else None

    @property
    def state(self) -> NegotiationState:
        if self.coordinator is None:
            return NegotiationState.IDLE
        return self.coordinator.state

    async def start_local_stream(self) -> MediaStream:
        """Acquire the local capture stream.

        Raises:
            CapturePermissionError: If the capture device denies access
        """
        if self.local_stream is not None and self.local_stream.active:
            return self.local_stream
        try:
            self.local_stream = await self.capture.acquire_stream(
                video=self.config.capture.video, audio=self.config.capture.audio
            )
        except Exception as e:
            self.error = e
            raise
        return self.local_stream

    async def create_call(self) -> str:
        """Start a new call as initiator and return its id."""
        coordinator = await self._new_coordinator(Role.INITIATOR)
        self.loading = True
        try:
            return await coordinator.start_as_initiator()
        except Exception as e:
            self.error = e
            raise
        finally:
            self.loading = False

    async def join_call(self, call_id: str) -> None:
        """Join an existing call as responder."""
        if not call_id or not call_id.strip():
            self.error = PreconditionError("A call id is required to join a call")
            raise self.error
        coordinator = await self._new_coordinator(Role.RESPONDER)
        self.loading = True
        try:
            await coordinator.start_as_responder(call_id)
        except Exception as e:
            self.error = e
            raise
        finally:
            self.loading = False

    async def wait_connected(self, timeout: float | None = None) -> None:
        if self.coordinator is None:
            raise InvalidStateError("No call in progress")
        try:
            await self.coordinator.wait_connected(timeout)
        except Exception as e:
            self.error = e
            raise

    def on_remote_track(self, callback: Callable[[Any], None]) -> None:
        """Register a callback for remote tracks of this and later calls."""
        self._track_callbacks.append(callback)
        if self.coordinator is not None:
            self.coordinator.on_remote_track(callback)

    async def hang_up(self) -> None:
        """End the current call, keeping the local stream for the next one."""
        if self.coordinator is not None:
            await self.coordinator.close()

    async def shutdown(self) -> None:
        """End the current call and release the local stream."""
        await self.hang_up()
        if self.local_stream is not None:
            self.local_stream.stop()
            self.local_stream = None

    async def _new_coordinator(self, role: Role) -> NegotiationCoordinator:
        if self.coordinator is not None and not self.coordinator.session.is_terminal:
            self.error = InvalidStateError("A call is already in progress; hang up first")
            raise self.error
        if self.local_stream is None or not self.local_stream.active:
            self.error = PreconditionError("Start the local stream before starting a call")
            raise self.error

        if self.coordinator is not None:
            await self.coordinator.close()

        self.error = None
        self.coordinator = NegotiationCoordinator(
            role=role,
            config=self.config,
            channel=self.channel,
            peer=self.peer_factory(),
            stream=self.local_stream,
        )
        for callback in self._track_callbacks:
            self.coordinator.on_remote_track(callback)
        logger.info("Call coordinator created", extra={"role": role.value})
        return self.coordinator
