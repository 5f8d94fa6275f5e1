"""Cancellable subscriptions for callback-style event delivery.

Every watch/event registration in the negotiation core returns a
``Subscription``. Cancelling it guarantees that the callback is not invoked
again, which lets session teardown be expressed as plain resource release.
"""

import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle for an active callback registration."""

    def __init__(self, on_cancel: Callable[[], None] | None = None) -> None:
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        """True until ``cancel()`` has been called."""
        return self._active

    def cancel(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        if self._on_cancel is not None:
            on_cancel, self._on_cancel = self._on_cancel, None
            on_cancel()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cancel()


class Listeners(Generic[T]):
    """Ordered set of callbacks for one event stream.

    Used by capability implementations to expose events (candidate
    discovered, track received, state changed) as subscriptions.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: list[tuple[Subscription, Callable[[T], None]]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        subscription = Subscription(lambda: self._remove(entry))
        entry = (subscription, callback)
        self._callbacks.append(entry)
        return subscription

    def emit(self, value: T) -> None:
        """Invoke every active callback in registration order."""
        for subscription, callback in list(self._callbacks):
            if subscription.active:
                callback(value)

    def clear(self) -> None:
        for subscription, _ in list(self._callbacks):
            subscription.cancel()

    def __len__(self) -> int:
        return len(self._callbacks)

    def _remove(self, entry: tuple[Subscription, Callable[[T], None]]) -> None:
        try:
            self._callbacks.remove(entry)
        except ValueError:
            logger.debug("Listener already removed", extra={"event": self.name})
