"""Candidate relay between the connection capability and the channel.

Local candidates are appended to the call's candidate subcollection, tagged
with the session's role, by a single publisher task so they keep discovery
order. Remote candidates are taken only from the opposite role, applied at
most once per entry id, and held back until the remote description has been
applied.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable

from src.negotiation.call_record import CallRecordStore
from src.negotiation.errors import ChannelError
from src.negotiation.peer.base import PeerConnection
from src.negotiation.session import NegotiationSession
from src.negotiation.subscription import Subscription
from src.negotiation.types import CandidateEntry, CandidatePayload

logger = logging.getLogger(__name__)


class CandidateRelay:
    """Bridges candidates between a connection and a call record."""

    def __init__(
        self,
        session: NegotiationSession,
        peer: PeerConnection,
        records: CallRecordStore,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self.session = session
        self.peer = peer
        self.records = records
        self.on_error = on_error

        self._outbox: asyncio.Queue[CandidatePayload] = asyncio.Queue()
        self._publisher: asyncio.Task[None] | None = None
        self._drain_lock = asyncio.Lock()
        self._subscriptions: list[Subscription] = []

    def start_publishing(self, call_id: str) -> None:
        """Publish every local candidate discovered from now on."""
        if self._publisher is not None:
            return
        self._subscriptions.append(self.peer.on_candidate(self._on_local_candidate))
        self._publisher = asyncio.create_task(
            self._publish_loop(call_id), name=f"candidate-publisher:{call_id}"
        )

    def watch_remote(self, call_id: str) -> None:
        """Subscribe to the call's candidate entries."""
        self._subscriptions.append(
            self.records.watch_candidates(call_id, self.deliver, self._report)
        )

    async def deliver(self, entries: list[CandidateEntry]) -> None:
        """Accept a delivered batch of candidate entries.

        Own-role entries and entries already seen are dropped; the rest are
        queued in arrival order and applied if the remote description is set.
        """
        if not self.session.accepts_deliveries:
            return

        own_role = self.session.role
        for entry in entries:
            if entry.role is own_role:
                continue
            if entry.entry_id in self.session.seen_candidate_ids:
                continue
            self.session.seen_candidate_ids.add(entry.entry_id)
            self.session.pending_candidates.append(entry)

        await self.flush()

    async def flush(self) -> None:
        """Apply queued remote candidates, oldest first, once the remote
        description is set. Concurrent flushes are serialized."""
        async with self._drain_lock:
            while (
                self.session.pending_candidates
                and self.session.remote_description_applied
                and self.session.accepts_deliveries
            ):
                entry = self.session.pending_candidates.pop(0)
                try:
                    await self.peer.add_ice_candidate(entry.payload)
                except ValueError as e:
                    logger.warning(
                        f"Skipping unusable remote candidate {entry.entry_id}: {e}",
                        extra={"call_id": self.session.call_id},
                    )
                    continue
                self.session.applied_candidate_count += 1
                logger.debug(
                    "Remote candidate applied",
                    extra={"call_id": self.session.call_id, "entry_id": entry.entry_id},
                )

    async def wait_published(self) -> None:
        """Wait until every queued local candidate has been written."""
        if self._publisher is None or self._publisher.done():
            return
        await self._outbox.join()

    async def close(self) -> None:
        """Stop publishing and cancel remote candidate delivery."""
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()

        if self._publisher is not None:
            self._publisher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._publisher
            self._publisher = None

    def _on_local_candidate(self, payload: CandidatePayload | None) -> None:
        if not self.session.accepts_deliveries:
            return
        if payload is None:
            # End-of-candidates is never published
            logger.debug(
                "Local candidate gathering complete", extra={"call_id": self.session.call_id}
            )
            return
        self._outbox.put_nowait(payload)

    async def _publish_loop(self, call_id: str) -> None:
        while True:
            payload = await self._outbox.get()
            try:
                if not self.session.accepts_deliveries:
                    continue
                await self.records.append_candidate(call_id, self.session.role, payload)
                self.session.published_candidate_count += 1
            except ChannelError as e:
                self._report(e)
                self._drop_outbox()
                return
            finally:
                self._outbox.task_done()

    def _drop_outbox(self) -> None:
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()

    def _report(self, error: Exception) -> None:
        if self.on_error is not None:
            self.on_error(error)
        else:
            logger.error(f"Candidate relay error: {error}", extra={"call_id": self.session.call_id})
