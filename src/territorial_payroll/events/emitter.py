"""In-process publisher for domain events.

Services append events to their own ``events`` list while they work.
The API publishes those lists through an EventEmitter only after the
database commit succeeds, so handlers never see a rolled-back change.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from territorial_payroll.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


@dataclass(frozen=True)
class Subscription:
    handler: EventHandler
    event_names: frozenset[str] = frozenset()  # empty: any event type
    categories: frozenset[EventCategory] = frozenset()  # empty: any category

    def matches(self, event: DomainEvent) -> bool:
        if self.event_names and event.event_type not in self.event_names:
            return False
        return not self.categories or event.category in self.categories


class EventEmitter:
    """Synchronous fan-out to subscribed handlers.

    A handler that raises is logged and skipped; the remaining handlers
    still run and the error is returned to the publisher.

        emitter = EventEmitter()
        emitter.on(PayPeriodCommitted, worker_enqueue)
        emitter.on_all(audit_handler(sink))
        emitter.emit_all(service.events)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def on(
        self,
        event_type: type[DomainEvent] | list[type[DomainEvent]],
        handler: EventHandler,
    ) -> None:
        """Subscribe to one event class or a list of them."""
        types = event_type if isinstance(event_type, list) else [event_type]
        self._subscriptions.append(
            Subscription(handler, event_names=frozenset(t.__name__ for t in types))
        )

    def on_category(
        self,
        category: EventCategory | list[EventCategory],
        handler: EventHandler,
    ) -> None:
        """Subscribe to every event in the given categories (e.g. all tax sync events)."""
        categories = category if isinstance(category, list) else [category]
        self._subscriptions.append(Subscription(handler, categories=frozenset(categories)))

    def on_all(self, handler: EventHandler) -> None:
        self._subscriptions.append(Subscription(handler))

    def off(self, handler: EventHandler) -> None:
        """Drop every subscription of this handler."""
        self._subscriptions = [s for s in self._subscriptions if s.handler != handler]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver one event. Returns the exceptions raised by handlers."""
        errors: list[Exception] = []
        for subscription in self._subscriptions:
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.exception(
                    "Event handler %r failed for %s",
                    subscription.handler,
                    event.event_type,
                    extra={"record_id": str(event.record_id)},
                )
                errors.append(e)
        return errors

    def emit_all(self, events: Iterable[DomainEvent]) -> list[Exception]:
        """Deliver events in order, collecting handler errors."""
        errors: list[Exception] = []
        for event in events:
            errors.extend(self.emit(event))
        return errors
