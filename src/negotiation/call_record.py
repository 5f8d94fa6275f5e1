"""Call record data access.

A call is one record in the rendezvous channel holding the initiator's offer
and, once the responder completes, its answer. Candidates discovered by
either side are appended to the record's ``candidates`` subcollection, each
tagged with the role that discovered it.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from src.negotiation.channel.base import ChannelEntry, RecordData, RendezvousChannel
from src.negotiation.errors import InvalidStateError
from src.negotiation.subscription import Subscription
from src.negotiation.types import CandidateEntry, CandidatePayload, Role, SessionDescription

logger = logging.getLogger(__name__)

CANDIDATES_SUBCOLLECTION = "candidates"


@dataclass(frozen=True)
class CallRecord:
    """Decoded view of a call record."""

    call_id: str
    offer: SessionDescription | None = None
    answer: SessionDescription | None = None

    @classmethod
    def from_data(cls, call_id: str, data: RecordData) -> "CallRecord":
        """Decode raw record data.

        Malformed offer or answer fields are treated as absent.
        """
        return cls(
            call_id=call_id,
            offer=_description_or_none(data.get("offer"), call_id, "offer"),
            answer=_description_or_none(data.get("answer"), call_id, "answer"),
        )


def _description_or_none(value: object, call_id: str, field: str) -> SessionDescription | None:
    if value is None:
        return None
    try:
        return SessionDescription.from_dict(value)
    except ValueError as e:
        logger.warning(f"Ignoring malformed {field} on call {call_id}: {e}")
        return None


class CallRecordStore:
    """Reads and writes call records through a rendezvous channel.

    Offer and answer are each written at most once; a repeated write is a
    no-op rather than an overwrite.
    """

    def __init__(self, channel: RendezvousChannel) -> None:
        self.channel = channel

    async def create_call(self) -> str:
        """Create an empty call record and return its id."""
        call_id = await self.channel.create_record({})
        logger.info("Call record created", extra={"call_id": call_id})
        return call_id

    async def fetch(self, call_id: str) -> CallRecord | None:
        """Fetch a call record by id, or None if it does not exist."""
        data = await self.channel.get_record(call_id)
        if data is None:
            return None
        return CallRecord.from_data(call_id, data)

    async def publish_offer(self, call_id: str, offer: SessionDescription) -> bool:
        """Write the offer once.

        Returns:
            True if written, False if an offer was already present
        """
        if not await self.channel.set_field_if_absent(call_id, "offer", offer.to_dict()):
            logger.warning("Offer already published, skipping", extra={"call_id": call_id})
            return False
        logger.info("Offer published", extra={"call_id": call_id})
        return True

    async def publish_answer(self, call_id: str, answer: SessionDescription) -> bool:
        """Merge the answer into the record once.

        The answer is added with a conditional field write and is never
        replaced, even by a concurrent writer.

        Returns:
            True if written, False if an answer was already present

        Raises:
            InvalidStateError: If the record holds no offer
        """
        existing = await self.fetch(call_id)
        if existing is None or existing.offer is None:
            raise InvalidStateError(f"Cannot answer call {call_id} before its offer exists")
        if not await self.channel.set_field_if_absent(call_id, "answer", answer.to_dict()):
            logger.warning("Answer already published, skipping", extra={"call_id": call_id})
            return False
        logger.info("Answer published", extra={"call_id": call_id})
        return True

    def watch(
        self,
        call_id: str,
        callback: Callable[[CallRecord], Awaitable[None] | None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        """Watch a call record; absent snapshots are not delivered."""

        async def deliver(data: RecordData | None) -> None:
            if data is None:
                return
            result = callback(CallRecord.from_data(call_id, data))
            if inspect.isawaitable(result):
                await result

        return self.channel.watch_record(call_id, deliver, on_error)

    async def append_candidate(self, call_id: str, role: Role, payload: CandidatePayload) -> str:
        """Append a candidate tagged with the discovering role."""
        return await self.channel.append_to_subcollection(
            call_id,
            CANDIDATES_SUBCOLLECTION,
            {"role": role.value, "payload": payload},
        )

    def watch_candidates(
        self,
        call_id: str,
        callback: Callable[[list[CandidateEntry]], Awaitable[None] | None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        """Watch candidate entries of both roles, in channel order."""

        async def deliver(batch: list[ChannelEntry]) -> None:
            entries: list[CandidateEntry] = []
            for item in batch:
                try:
                    entries.append(CandidateEntry.from_channel(item.entry_id, item.data))
                except ValueError as e:
                    logger.warning(f"Skipping candidate entry on call {call_id}: {e}")
            result = callback(entries)
            if inspect.isawaitable(result):
                await result

        return self.channel.watch_subcollection(
            call_id, CANDIDATES_SUBCOLLECTION, deliver, on_error
        )
