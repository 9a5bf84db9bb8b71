"""EventEmitter — fans observer events out to registered callbacks."""

from __future__ import annotations

import logging

from acphost.constants import Observer
from acphost.events.models import ObserverEvent

logger = logging.getLogger(__name__)


class EventEmitter:
    """Delivers events to every observer, synchronously and in order.

    Emission happens on the caller's task, so events produced by one task
    reach observers in the order they were emitted.  A failing observer is
    logged and skipped; it never blocks delivery to the others.
    """

    def __init__(self) -> None:
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> None:
        """Register *observer* for all subsequent events."""
        self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        """Remove *observer*.  Unknown observers are ignored."""
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: ObserverEvent) -> None:
        """Send *event* to every observer."""
        name = event.event_name
        payload = event.payload()
        logger.debug("Emitting event: %s", name)
        for observer in list(self._observers):
            try:
                observer(name, payload)
            except Exception:
                logger.exception("Observer failed on event %s", name)
