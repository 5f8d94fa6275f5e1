"""Negotiation coordinator.

Drives the handshake for one call: decides what to write to the rendezvous
channel and when, filters and applies what comes back, and keeps the two
roles from racing each other.

Initiator:  create record → build offer → write offer → watch record
            → apply answer once → connected
Responder:  fetch record → apply offer → build answer → merge answer
            → watch candidates → connected

Candidates flow both ways through the candidate relay for the whole session.
All guard state lives on ``NegotiationSession``; channel and connection
callbacks may arrive any number of times and in any order.
"""

import asyncio
import logging
from collections.abc import Callable
from types import TracebackType
from typing import Any

from src.negotiation.call_record import CallRecord, CallRecordStore
from src.negotiation.candidates import CandidateRelay
from src.negotiation.capture import MediaStream
from src.negotiation.channel.base import RendezvousChannel
from src.negotiation.config import NegotiationConfig
from src.negotiation.description import LocalDescriptionBuilder
from src.negotiation.errors import (
    InvalidStateError,
    NotFoundError,
    PeerConnectionError,
    PreconditionError,
)
from src.negotiation.peer.base import CONNECTED, FAILED, PeerConnection
from src.negotiation.session import NegotiationSession, NegotiationState
from src.negotiation.subscription import Listeners, Subscription
from src.negotiation.types import Role, SessionDescription

logger = logging.getLogger(__name__)


class NegotiationCoordinator:
    """Owns the negotiation state machine for one call.

    Use as an async context manager so teardown runs on every exit path:

        async with NegotiationCoordinator(Role.INITIATOR, config, channel, peer, stream) as c:
            call_id = await c.start_as_initiator()
            await c.wait_connected(timeout=30)
    """

    def __init__(
        self,
        role: Role,
        config: NegotiationConfig,
        channel: RendezvousChannel,
        peer: PeerConnection,
        stream: MediaStream | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            role: Initiator or responder
            config: Negotiation configuration
            channel: Rendezvous channel shared with the remote peer
            peer: Connection capability for this session
            stream: Active local capture stream
        """
        self.config = config
        self.session = NegotiationSession(role=role)
        self.peer = peer
        self.stream = stream
        self.records = CallRecordStore(channel)
        self.builder = LocalDescriptionBuilder(peer)
        self.relay = CandidateRelay(self.session, peer, self.records, on_error=self._on_async_error)

        self._remote_tracks: Listeners[Any] = Listeners("remote-track")
        self._settled = asyncio.Event()
        self._subscriptions: list[Subscription] = [
            peer.on_connection_state_change(self._on_connection_state),
            peer.on_track(self._on_remote_track),
        ]

    @property
    def role(self) -> Role:
        return self.session.role

    @property
    def state(self) -> NegotiationState:
        return self.session.state

    @property
    def call_id(self) -> str | None:
        return self.session.call_id

    @property
    def error(self) -> Exception | None:
        return self.session.error

    async def start_as_initiator(self) -> str:
        """Create a call and publish its offer.

        Returns:
            The new call id

        Raises:
            PreconditionError: If no active capture stream (no state change)
            InvalidStateError: If the session is not idle, is closed, or is a responder
            ChannelError: If a channel write fails (session → FAILED)
        """
        self._ensure_open()
        self._require_role(Role.INITIATOR)
        stream = self._require_stream()
        self.session.transition_state(NegotiationState.OFFERING)

        try:
            call_id = await self.records.create_call()
            self._ensure_open()
            self.session.call_id = call_id

            self.relay.start_publishing(call_id)
            offer = await self.builder.build_offer(stream.tracks)
            self._ensure_open()
            await self.records.publish_offer(call_id, offer)
            self._advance(NegotiationState.AWAITING_ANSWER)

            self._subscriptions.append(
                self.records.watch(call_id, self._on_call_record, self._on_async_error)
            )
            self.relay.watch_remote(call_id)
        except Exception as e:
            self._fail(e)
            raise

        logger.info("Call offered", extra=self.session.describe())
        return call_id

    async def start_as_responder(self, call_id: str) -> None:
        """Join an existing call by answering its offer.

        Raises:
            PreconditionError: If call_id is empty or no capture stream (no state change)
            InvalidStateError: If the session is not idle, is closed, or is an initiator
            NotFoundError: If no record or no offer exists (session → FAILED)
            ChannelError: If a channel read or write fails (session → FAILED)
        """
        self._ensure_open()
        self._require_role(Role.RESPONDER)
        if not call_id or not call_id.strip():
            raise PreconditionError("A call id is required to join a call")
        stream = self._require_stream()
        self.session.transition_state(NegotiationState.AWAITING_OFFER)
        self.session.call_id = call_id = call_id.strip()

        try:
            record = await self.records.fetch(call_id)
            self._ensure_open()
            if record is None:
                raise NotFoundError(f"Call {call_id} does not exist")
            if record.offer is None:
                raise NotFoundError(f"Call {call_id} has no offer")
            self._advance(NegotiationState.ANSWERING)

            self.relay.start_publishing(call_id)
            await self._apply_remote_description(record.offer)
            self._ensure_open()
            answer = await self.builder.build_answer(stream.tracks)
            self._ensure_open()
            await self.records.publish_answer(call_id, answer)
            self._advance(NegotiationState.AWAITING_CONNECTION)

            self.relay.watch_remote(call_id)
            self._maybe_connected()
        except Exception as e:
            self._fail(e)
            raise

        logger.info("Call answered", extra=self.session.describe())

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until the session is connected.

        Raises:
            TimeoutError: If nothing settles within ``timeout`` seconds
            NegotiationError: The session's error if it failed
            InvalidStateError: If the session was closed first
        """
        await asyncio.wait_for(self._settled.wait(), timeout)
        if self.session.state is NegotiationState.CONNECTED:
            return
        if self.session.error is not None:
            raise self.session.error
        raise InvalidStateError(f"Session ended in state {self.session.state.value}")

    def on_remote_track(self, callback: Callable[[Any], None]) -> Subscription:
        """Subscribe to tracks received from the remote peer."""
        return self._remote_tracks.subscribe(callback)

    async def close(self) -> None:
        """Tear the session down. Safe to call more than once.

        Cancels every subscription, stops the candidate relay and releases the
        connection. Deliveries arriving afterwards are ignored.
        """
        if self.session.closed:
            return
        self.session.closed = True
        if self.session.can_transition(NegotiationState.CLOSED):
            self.session.transition_state(NegotiationState.CLOSED)

        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        self._remote_tracks.clear()

        try:
            await self.relay.close()
            await self.peer.close()
        finally:
            self._settled.set()
        logger.info("Negotiation session closed", extra=self.session.describe())

    async def __aenter__(self) -> "NegotiationCoordinator":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _on_call_record(self, record: CallRecord) -> None:
        if not self.session.accepts_deliveries:
            return
        if record.answer is None or self.session.remote_apply_started:
            return
        await self._apply_remote_description(record.answer)
        self._maybe_connected()

    async def _apply_remote_description(self, description: SessionDescription) -> None:
        # Claimed before awaiting so a redelivered snapshot cannot apply it twice
        if self.session.remote_apply_started:
            return
        self.session.remote_apply_started = True
        await self.peer.set_remote_description(description)
        if self.session.closed:
            return
        self.session.remote_description_applied = True
        logger.info(
            "Remote description applied",
            extra={"call_id": self.session.call_id, "type": description.type},
        )
        await self.relay.flush()

    def _on_connection_state(self, state: str) -> None:
        if not self.session.accepts_deliveries:
            return
        if state == CONNECTED:
            self.session.peer_connected = True
            self._maybe_connected()
        elif state == FAILED:
            self._fail(PeerConnectionError(f"Connection failed for call {self.session.call_id}"))

    def _on_remote_track(self, track: Any) -> None:
        if self.session.closed:
            return
        self._remote_tracks.emit(track)

    def _maybe_connected(self) -> None:
        if not self.session.ready_to_connect or not self.session.accepts_deliveries:
            return
        if self.session.state in (
            NegotiationState.AWAITING_ANSWER,
            NegotiationState.AWAITING_CONNECTION,
        ):
            self.session.transition_state(NegotiationState.CONNECTED)
            self._settled.set()

    def _on_async_error(self, error: Exception) -> None:
        if self.session.closed:
            logger.debug(f"Ignoring error after close: {error}")
            return
        self._fail(error)

    def _fail(self, error: Exception) -> None:
        self.session.fail(error)
        self._settled.set()

    def _advance(self, state: NegotiationState) -> None:
        self._ensure_open()
        self.session.transition_state(state)

    def _ensure_open(self) -> None:
        if self.session.closed:
            raise InvalidStateError("Negotiation session is closed")

    def _require_role(self, role: Role) -> None:
        if self.session.role is not role:
            raise InvalidStateError(
                f"Operation requires the {role.value} role, session is {self.session.role.value}"
            )

    def _require_stream(self) -> MediaStream:
        if self.stream is None or not self.stream.active:
            raise PreconditionError("Local capture stream is not active")
        return self.stream
