"""In-process rendezvous channel.

Keeps records and subcollections in dictionaries and delivers notifications
through one queue and pump task per subscription. Used by the unit tests and
by the loopback demo, where both roles share a single event loop.
"""

import asyncio
import copy
import inspect
import itertools
import logging
import uuid
from collections.abc import Callable
from typing import Any

from src.negotiation.channel.base import (
    ChannelEntry,
    EntriesCallback,
    ErrorCallback,
    RecordCallback,
    RecordData,
    RendezvousChannel,
)
from src.negotiation.errors import ChannelError
from src.negotiation.subscription import Subscription

logger = logging.getLogger(__name__)


class _Watch:
    """Queue-backed delivery for one subscription."""

    def __init__(
        self,
        key: tuple[str, ...],
        callback: Callable[[Any], Any],
        on_error: ErrorCallback | None,
    ) -> None:
        self.key = key
        self.callback = callback
        self.on_error = on_error
        self.pending = 0
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.subscription = Subscription(self._stop)
        self.task = asyncio.create_task(self._pump())

    def push(self, value: Any) -> None:
        if self.subscription.active:
            self.pending += 1
            self.queue.put_nowait(value)

    async def _pump(self) -> None:
        while self.subscription.active:
            value = await self.queue.get()
            try:
                if not self.subscription.active:
                    break
                result = self.callback(value)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Watch callback failed", extra={"key": "/".join(self.key)})
                if self.on_error is not None:
                    self.on_error(e)
            finally:
                self.pending = max(0, self.pending - 1)

    def _stop(self) -> None:
        self.pending = 0
        if self.task is not asyncio.current_task():
            self.task.cancel()


class InMemoryChannel(RendezvousChannel):
    """Dictionary-backed rendezvous channel for a single event loop."""

    def __init__(self) -> None:
        self._records: dict[str, RecordData] = {}
        self._subcollections: dict[tuple[str, str], list[ChannelEntry]] = {}
        self._watches: list[_Watch] = []
        self._entry_counter = itertools.count(1)
        self._closed = False

    async def create_record(self, data: RecordData) -> str:
        self._check_open()
        record_id = uuid.uuid4().hex
        self._records[record_id] = copy.deepcopy(data)
        self._notify_record(record_id)
        return record_id

    async def get_record(self, record_id: str) -> RecordData | None:
        self._check_open()
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def set_record(self, record_id: str, data: RecordData, merge: bool = False) -> None:
        self._check_open()
        if merge and record_id in self._records:
            self._records[record_id].update(copy.deepcopy(data))
        else:
            self._records[record_id] = copy.deepcopy(data)
        self._notify_record(record_id)

    async def set_field_if_absent(self, record_id: str, field: str, value: Any) -> bool:
        self._check_open()
        record = self._records.setdefault(record_id, {})
        if field in record:
            return False
        record[field] = copy.deepcopy(value)
        self._notify_record(record_id)
        return True

    def watch_record(
        self,
        record_id: str,
        callback: RecordCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        watch = self._add_watch((record_id,), callback, on_error)
        watch.push(copy.deepcopy(self._records.get(record_id)))
        return watch.subscription

    async def append_to_subcollection(
        self, record_id: str, name: str, entry: dict[str, Any]
    ) -> str:
        self._check_open()
        entry_id = f"{next(self._entry_counter):012d}"
        item = ChannelEntry(entry_id=entry_id, data=copy.deepcopy(entry))
        self._subcollections.setdefault((record_id, name), []).append(item)
        for watch in self._live_watches((record_id, name)):
            watch.push([item])
        return entry_id

    def watch_subcollection(
        self,
        record_id: str,
        name: str,
        callback: EntriesCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        watch = self._add_watch((record_id, name), callback, on_error)
        watch.push(list(self._subcollections.get((record_id, name), [])))
        return watch.subscription

    def entries(self, record_id: str, name: str) -> list[ChannelEntry]:
        """Snapshot of a subcollection, in append order."""
        return list(self._subcollections.get((record_id, name), []))

    def redeliver_record(self, record_id: str) -> None:
        """Deliver the current snapshot again to every watcher of a record."""
        self._notify_record(record_id)

    def redeliver_subcollection(self, record_id: str, name: str) -> None:
        """Deliver the full entry set again, as a store does on resubscription."""
        existing = list(self._subcollections.get((record_id, name), []))
        for watch in self._live_watches((record_id, name)):
            watch.push(existing)

    async def wait_idle(self) -> None:
        """Wait until every queued notification has been delivered."""
        while any(w.pending for w in self._watches if w.subscription.active):
            await asyncio.sleep(0)

    async def close(self) -> None:
        self._closed = True
        for watch in list(self._watches):
            watch.subscription.cancel()
        self._watches.clear()

    @property
    def active_watch_count(self) -> int:
        return sum(1 for w in self._watches if w.subscription.active)

    def _add_watch(
        self,
        key: tuple[str, ...],
        callback: Callable[[Any], Any],
        on_error: ErrorCallback | None,
    ) -> _Watch:
        self._check_open()
        watch = _Watch(key, callback, on_error)
        self._watches.append(watch)
        return watch

    def _live_watches(self, key: tuple[str, ...]) -> list[_Watch]:
        self._watches = [w for w in self._watches if w.subscription.active]
        return [w for w in self._watches if w.key == key]

    def _notify_record(self, record_id: str) -> None:
        snapshot = self._records.get(record_id)
        for watch in self._live_watches((record_id,)):
            watch.push(copy.deepcopy(snapshot))

    def _check_open(self) -> None:
        if self._closed:
            raise ChannelError("Channel is closed")
