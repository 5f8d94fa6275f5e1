"""Unit tests for call record data access."""

import asyncio
from typing import Any

import pytest

from src.negotiation.call_record import CANDIDATES_SUBCOLLECTION, CallRecord, CallRecordStore
from src.negotiation.channel.memory import InMemoryChannel
from src.negotiation.errors import InvalidStateError
from src.negotiation.types import CandidateEntry, Role, SessionDescription
from tests.helpers.negotiation_fakes import make_candidate, settle

OFFER = SessionDescription(type="offer", sdp="v=0 offer")
ANSWER = SessionDescription(type="answer", sdp="v=0 answer")


def test_from_data_ignores_malformed_fields() -> None:
    """Test that malformed offer or answer fields decode as absent."""
    record = CallRecord.from_data("c1", {"offer": {"type": "offer"}, "answer": "nonsense"})

    assert record.offer is None
    assert record.answer is None


def test_from_data_decodes_descriptions() -> None:
    """Test decoding of a complete record."""
    record = CallRecord.from_data("c1", {"offer": OFFER.to_dict(), "answer": ANSWER.to_dict()})

    assert record == CallRecord(call_id="c1", offer=OFFER, answer=ANSWER)


class TestCallRecordStore:
    """Test offer/answer writes."""

    async def test_create_and_fetch(self, channel: InMemoryChannel) -> None:
        """Test that a created call exists with no offer or answer."""
        store = CallRecordStore(channel)

        call_id = await store.create_call()
        record = await store.fetch(call_id)

        assert record == CallRecord(call_id=call_id)
        assert await store.fetch("missing") is None

    async def test_offer_written_once(self, channel: InMemoryChannel) -> None:
        """Test that a second offer does not overwrite the first."""
        store = CallRecordStore(channel)
        call_id = await store.create_call()

        assert await store.publish_offer(call_id, OFFER) is True
        assert await store.publish_offer(call_id, SessionDescription("offer", "other")) is False

        record = await store.fetch(call_id)
        assert record is not None
        assert record.offer == OFFER

    async def test_answer_requires_offer(self, channel: InMemoryChannel) -> None:
        """Test that answering a call without an offer is rejected."""
        store = CallRecordStore(channel)
        call_id = await store.create_call()

        with pytest.raises(InvalidStateError):
            await store.publish_answer(call_id, ANSWER)

    async def test_answer_merges_and_is_written_once(self, channel: InMemoryChannel) -> None:
        """Test that the answer keeps the offer and cannot be replaced."""
        store = CallRecordStore(channel)
        call_id = await store.create_call()
        await store.publish_offer(call_id, OFFER)

        assert await store.publish_answer(call_id, ANSWER) is True
        assert await store.publish_answer(call_id, SessionDescription("answer", "x")) is False

        record = await store.fetch(call_id)
        assert record == CallRecord(call_id=call_id, offer=OFFER, answer=ANSWER)

    async def test_watch_skips_missing_record(self, channel: InMemoryChannel) -> None:
        """Test that absent snapshots are not delivered to watchers."""
        store = CallRecordStore(channel)
        seen: list[CallRecord] = []

        subscription = store.watch("pending-call", seen.append)
        await settle(channel)
        assert seen == []

        await channel.set_record("pending-call", {"offer": OFFER.to_dict()})
        await settle(channel)

        assert seen == [CallRecord(call_id="pending-call", offer=OFFER)]
        subscription.cancel()

    async def test_watch_async_callback(self, channel: InMemoryChannel) -> None:
        """Test that coroutine callbacks are awaited."""
        store = CallRecordStore(channel)
        call_id = await store.create_call()
        done = asyncio.Event()

        async def on_record(record: CallRecord) -> None:
            done.set()

        store.watch(call_id, on_record)
        await asyncio.wait_for(done.wait(), timeout=1.0)


class TestCandidates:
    """Test the candidate subcollection."""

    async def test_append_tags_role(self, channel: InMemoryChannel) -> None:
        """Test that candidates are stored with their discovering role."""
        store = CallRecordStore(channel)
        payload = make_candidate("a", 1)

        await store.append_candidate("c1", Role.INITIATOR, payload)

        (entry,) = channel.entries("c1", CANDIDATES_SUBCOLLECTION)
        assert entry.data == {"role": "initiator", "payload": payload}

    async def test_watch_skips_malformed_entries(self, channel: InMemoryChannel) -> None:
        """Test that entries without a valid role or payload are dropped."""
        store = CallRecordStore(channel)
        await channel.append_to_subcollection("c1", CANDIDATES_SUBCOLLECTION, {"role": "x"})
        await channel.append_to_subcollection(
            "c1", CANDIDATES_SUBCOLLECTION, {"role": "responder", "payload": "bad"}
        )
        good_id = await store.append_candidate("c1", Role.RESPONDER, make_candidate("b", 1))
        batches: list[list[CandidateEntry]] = []

        store.watch_candidates("c1", batches.append)
        await settle(channel)

        assert batches == [
            [CandidateEntry(entry_id=good_id, role=Role.RESPONDER, payload=make_candidate("b", 1))]
        ]


class YieldingChannel(InMemoryChannel):
    """Channel that yields to other tasks after every read."""

    async def get_record(self, record_id: str) -> dict[str, Any] | None:
        record = await super().get_record(record_id)
        await asyncio.sleep(0)
        return record


class TestConcurrentWrites:
    """Test write-once rules under interleaved writers."""

    async def test_concurrent_answers_write_once(self) -> None:
        """Test that only one of two racing answers is written."""
        channel = YieldingChannel()
        store = CallRecordStore(channel)
        call_id = await store.create_call()
        await store.publish_offer(call_id, OFFER)
        first = SessionDescription(type="answer", sdp="first")
        second = SessionDescription(type="answer", sdp="second")

        results = await asyncio.gather(
            store.publish_answer(call_id, first),
            store.publish_answer(call_id, second),
        )

        assert sorted(results) == [False, True]
        record = await store.fetch(call_id)
        assert record is not None
        assert record.answer == (first if results[0] else second)
        await channel.close()

    async def test_concurrent_offers_write_once(self) -> None:
        """Test that only one of two racing offers is written."""
        channel = YieldingChannel()
        store = CallRecordStore(channel)
        call_id = await store.create_call()

        results = await asyncio.gather(
            store.publish_offer(call_id, OFFER),
            store.publish_offer(call_id, SessionDescription(type="offer", sdp="other")),
        )

        assert results == [True, False]
        record = await store.fetch(call_id)
        assert record is not None
        assert record.offer == OFFER
        await channel.close()
