"""
Event outbox and dispatcher

Events produced inside a transaction are parked in an EventOutbox and only
handed to subscribers once the transaction has committed. A rolled-back unit
of work simply drops its outbox.
"""

from collections import defaultdict
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from medcure.core.logging_config import get_logger
from medcure.schemas.events import DomainEvent

logger = get_logger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventOutbox:
    """Events collected during one unit of work"""

    def __init__(self):
        self._events: List[DomainEvent] = []

    def add(self, event: DomainEvent) -> None:
        # the same fact reported twice in one transaction is delivered once
        if event not in self._events:
            self._events.append(event)

    @property
    def events(self) -> List[DomainEvent]:
        return list(self._events)

    def drain(self) -> List[DomainEvent]:
        events, self._events = self._events, []
        return events

    def __len__(self):
        return len(self._events)


class EventDispatcher:
    """Post-commit delivery to subscribers (notification collaborator etc.)

    Delivery is fire-and-forget from the sale's point of view: a failing
    handler is logged and the remaining handlers still run.
    """

    def __init__(self):
        self._handlers: Dict[Optional[str], List[EventHandler]] = defaultdict(list)

    def subscribe(self, handler: EventHandler, event_type: Optional[str] = None) -> None:
        """Register a handler for one event type, or for every event when event_type is None"""
        self._handlers[event_type].append(handler)

    async def dispatch(self, events: Iterable[DomainEvent]) -> int:
        """Deliver events in order; returns the number of failed deliveries"""
        failures = 0
        for event in events:
            handlers = self._handlers.get(event.event_type, []) + self._handlers.get(None, [])
            for handler in handlers:
                try:
                    await handler(event)
                except Exception:
                    failures += 1
                    logger.exception(f"Event handler {getattr(handler, '__name__', handler)} failed for {event!r}")
        return failures


# Process-wide dispatcher used by the API layer
dispatcher = EventDispatcher()
