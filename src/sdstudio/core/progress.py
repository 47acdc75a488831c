"""Progress fan-out for in-flight lifecycle operations.

:class:`ProgressBus` broadcasts :class:`~sdstudio.core.models.ProgressEvent`
objects from the controller to any number of subscribers.  Delivery is
synchronous and ordered: ``publish()`` calls every handler that was
subscribed at the moment of the call, in subscription order, before it
returns.

Subscribers may be added or removed at any time, including from inside a
handler while a publish is running.  ``publish()`` iterates over a snapshot,
so such changes take effect from the next event on.

Usage
-----
::

    bus = ProgressBus()
    sub = bus.subscribe(lambda event: print(event.phase, event.percent))
    ...
    sub.unsubscribe()

    # or scoped:
    with bus.subscribe(handler):
        await controller.load_model("sd-turbo")
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable

from .models import ProgressEvent

logger = logging.getLogger(__name__)

ProgressHandler = Callable[[ProgressEvent], None]


class Subscription:
    """Handle returned by :meth:`ProgressBus.subscribe`.

    Unsubscribing more than once is harmless.
    """

    def __init__(self, bus: ProgressBus, token: int, handler: ProgressHandler) -> None:
        self._bus = bus
        self.token = token
        self.handler = handler

    def unsubscribe(self) -> None:
        self._bus.unsubscribe(self)

    @property
    def active(self) -> bool:
        return self._bus.is_subscribed(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"Subscription(token={self.token}, active={self.active})"


class ProgressBus:
    """Synchronous multi-subscriber broadcast of progress events."""

    def __init__(self) -> None:
        self._handlers: dict[int, ProgressHandler] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, handler: ProgressHandler) -> Subscription:
        """Register *handler* for all future events.

        The same callable may be subscribed more than once; each
        subscription receives its own copy of every event.
        """
        token = next(self._tokens)
        self._handlers[token] = handler
        logger.debug("Progress subscriber %d added (%d total).", token, len(self._handlers))
        return Subscription(self, token, handler)

    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivering events to *subscription*.

        Unknown or already removed subscriptions, and subscriptions issued
        by another bus, are ignored.
        """
        if not self.is_subscribed(subscription):
            return
        if self._handlers.pop(subscription.token, None) is not None:
            logger.debug(
                "Progress subscriber %d removed (%d left).",
                subscription.token,
                len(self._handlers),
            )

    def is_subscribed(self, subscription: Subscription) -> bool:
        if subscription._bus is not self:
            return False
        return self._handlers.get(subscription.token) is subscription.handler

    def publish(self, event: ProgressEvent) -> None:
        """Deliver *event* to every current subscriber.

        A handler that raises is logged and skipped; the remaining handlers
        still receive the event.
        """
        for token, handler in list(self._handlers.items()):
            try:
                handler(event)
            except Exception:
                logger.exception("Progress subscriber %d raised while handling %s.", token, event)

    def __len__(self) -> int:
        return len(self._handlers)
