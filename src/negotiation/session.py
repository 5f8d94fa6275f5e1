"""Negotiation session state.

Holds the handshake state machine for one call and the guard fields that keep
negotiation correct under duplicate and out-of-order deliveries. Everything
that decides whether an action may happen lives here as plain data so the
state machine can be inspected and tested without a channel or connection.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from src.negotiation.errors import InvalidStateError
from src.negotiation.types import CandidateEntry, Role

logger = logging.getLogger(__name__)


class NegotiationState(Enum):
    """Negotiation state machine states.

    State Transitions:
    - IDLE → OFFERING (initiator requests call creation)
    - IDLE → AWAITING_OFFER (responder supplied a call id)
    - OFFERING → AWAITING_ANSWER (offer committed, record watched)
    - AWAITING_OFFER → ANSWERING (offer found)
    - ANSWERING → AWAITING_CONNECTION (answer committed)
    - AWAITING_ANSWER → CONNECTED (answer applied and connection up)
    - AWAITING_CONNECTION → CONNECTED (connection up)
    - * → FAILED (unrecoverable error)
    - * → CLOSED (user ends call or session torn down)

    FAILED and CLOSED are terminal.
    """

    IDLE = "idle"
    OFFERING = "offering"
    AWAITING_OFFER = "awaiting_offer"
    AWAITING_ANSWER = "awaiting_answer"
    ANSWERING = "answering"
    AWAITING_CONNECTION = "awaiting_connection"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


TERMINAL_STATES = frozenset({NegotiationState.FAILED, NegotiationState.CLOSED})

_ENDINGS = {NegotiationState.FAILED, NegotiationState.CLOSED}

# Valid state transitions
VALID_TRANSITIONS: dict[NegotiationState, set[NegotiationState]] = {
    NegotiationState.IDLE: {
        NegotiationState.OFFERING,
        NegotiationState.AWAITING_OFFER,
        *_ENDINGS,
    },
    NegotiationState.OFFERING: {NegotiationState.AWAITING_ANSWER, *_ENDINGS},
    NegotiationState.AWAITING_OFFER: {NegotiationState.ANSWERING, *_ENDINGS},
    NegotiationState.AWAITING_ANSWER: {NegotiationState.CONNECTED, *_ENDINGS},
    NegotiationState.ANSWERING: {NegotiationState.AWAITING_CONNECTION, *_ENDINGS},
    NegotiationState.AWAITING_CONNECTION: {NegotiationState.CONNECTED, *_ENDINGS},
    NegotiationState.CONNECTED: {NegotiationState.CLOSED},
    NegotiationState.FAILED: set(),  # Terminal state
    NegotiationState.CLOSED: set(),  # Terminal state
}


@dataclass
class NegotiationSession:
    """In-memory state of one local negotiation.

    Attributes:
        role: Initiator or responder, fixed at creation
        state: Current state machine state
        call_id: Call record id, bound once known
        error: Last failure, kept for inspection after FAILED
        closed: Set at teardown; later deliveries are ignored
        remote_apply_started: Remote description application has been claimed
        remote_description_applied: Remote description is set on the connection
        peer_connected: Connection capability reported "connected"
        pending_candidates: Remote candidates waiting to be applied, arrival order
        seen_candidate_ids: Remote entry ids already queued or applied
        applied_candidate_count: Remote candidates applied to the connection
        published_candidate_count: Local candidates written to the channel
    """

    role: Role
    state: NegotiationState = NegotiationState.IDLE
    call_id: str | None = None
    error: Exception | None = None
    closed: bool = False
    remote_apply_started: bool = False
    remote_description_applied: bool = False
    peer_connected: bool = False
    pending_candidates: list[CandidateEntry] = field(default_factory=list)
    seen_candidate_ids: set[str] = field(default_factory=set)
    applied_candidate_count: int = 0
    published_candidate_count: int = 0
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_ts: float = field(default_factory=time.monotonic)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def accepts_deliveries(self) -> bool:
        """True while channel and connection callbacks should still act."""
        return not self.closed and not self.is_terminal

    @property
    def ready_to_connect(self) -> bool:
        """Remote description applied and connection reported up."""
        return self.remote_description_applied and self.peer_connected

    def can_transition(self, new_state: NegotiationState) -> bool:
        return new_state in VALID_TRANSITIONS.get(self.state, set())

    def transition_state(self, new_state: NegotiationState) -> None:
        """Transition session to a new state with validation.

        Args:
            new_state: Target state

        Raises:
            InvalidStateError: If transition is invalid
        """
        if not self.can_transition(new_state):
            raise InvalidStateError(
                f"Invalid state transition: {self.state.value} → {new_state.value}"
            )

        old_state = self.state
        self.state = new_state

        logger.info(
            "Negotiation state transition",
            extra={
                "session_id": self.session_id,
                "role": self.role.value,
                "call_id": self.call_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

    def fail(self, error: Exception) -> None:
        """Record an error and move to FAILED if not already terminal."""
        self.error = error
        if self.can_transition(NegotiationState.FAILED):
            self.transition_state(NegotiationState.FAILED)
        logger.error(
            f"Negotiation failed: {error}",
            extra={
                "session_id": self.session_id,
                "role": self.role.value,
                "call_id": self.call_id,
                "error_type": type(error).__name__,
            },
        )

    def describe(self) -> dict[str, str | int | bool | None]:
        """Session summary for logging/monitoring."""
        return {
            "session_id": self.session_id,
            "role": self.role.value,
            "state": self.state.value,
            "call_id": self.call_id,
            "error": str(self.error) if self.error is not None else None,
            "remote_description_applied": self.remote_description_applied,
            "peer_connected": self.peer_connected,
            "pending_candidates": len(self.pending_candidates),
            "applied_candidates": self.applied_candidate_count,
            "published_candidates": self.published_candidate_count,
            "age_s": round(time.monotonic() - self.created_ts, 3),
        }
