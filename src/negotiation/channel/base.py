"""Rendezvous channel abstraction.

The rendezvous channel is a shared, subscribable document store used purely
as a signaling relay between two peers that cannot yet talk directly. Each
call is one record; candidates live in an append-only subcollection of it.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from src.negotiation.subscription import Subscription

RecordData = dict[str, Any]


@dataclass(frozen=True)
class ChannelEntry:
    """One entry of a record's subcollection, identified by ``entry_id``."""

    entry_id: str
    data: dict[str, Any]


RecordCallback = Callable[[RecordData | None], Awaitable[None] | None]
EntriesCallback = Callable[[list[ChannelEntry]], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], None]


class RendezvousChannel(ABC):
    """Base class for rendezvous channel backends.

    Callbacks may be plain functions or coroutine functions. Each subscription
    delivers serially and in order; a delivery is not started before the
    previous one for the same subscription has completed. Deliveries may
    repeat data already delivered.
    """

    @abstractmethod
    async def create_record(self, data: RecordData) -> str:
        """Create a record with a fresh id.

        Raises:
            ChannelError: If the write fails
        """

    @abstractmethod
    async def get_record(self, record_id: str) -> RecordData | None:
        """Fetch a record, or None if it does not exist.

        Raises:
            ChannelError: If the read fails
        """

    @abstractmethod
    async def set_record(self, record_id: str, data: RecordData, merge: bool = False) -> None:
        """Write a record atomically.

        With ``merge`` the given top-level fields are added to the existing
        record and its subcollections are untouched; without it the record's
        fields are replaced.

        Raises:
            ChannelError: If the write fails
        """

    @abstractmethod
    async def set_field_if_absent(self, record_id: str, field: str, value: Any) -> bool:
        """Atomically add one top-level field unless the record already has it.

        Other fields and subcollections are untouched. Creates the record if
        it does not exist.

        Returns:
            True if the field was written, False if it was already present

        Raises:
            ChannelError: If the write fails
        """

    @abstractmethod
    def watch_record(
        self,
        record_id: str,
        callback: RecordCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Deliver the current record snapshot, then one snapshot per change."""

    @abstractmethod
    async def append_to_subcollection(
        self, record_id: str, name: str, entry: dict[str, Any]
    ) -> str:
        """Append an entry and return its id.

        Raises:
            ChannelError: If the write fails
        """

    @abstractmethod
    def watch_subcollection(
        self,
        record_id: str,
        name: str,
        callback: EntriesCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Deliver the existing entries as one batch, then batches of new entries."""

    @abstractmethod
    async def close(self) -> None:
        """Cancel all subscriptions and release backend resources."""
