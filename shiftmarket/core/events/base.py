"""Domain event base classes and the in-process event bus.

Payment transitions are announced as events so the surrounding application
(notifications, UI refresh, bookkeeping) can react without the payment service
knowing about it. Publishing never fails because of a subscriber.
"""

from __future__ import annotations

import inspect
from collections import Counter, defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar
from uuid import UUID, uuid4

from shiftmarket.utils.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[["BaseEvent"], Any]
_H = TypeVar("_H", bound=EventHandler)


@dataclass(frozen=True)
class BaseEvent:
    """Base class for all domain events.

    Subclasses are frozen dataclasses adding their own fields. `event_id` and
    `occurred_at` are filled in automatically.
    """

    event_id: UUID = field(default_factory=uuid4, init=False)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC), init=False)
    context: dict[str, Any] | None = field(default=None, kw_only=True)

    @property
    def context_data(self) -> dict[str, Any]:
        """Fields worth logging when the event is published."""
        return {}


class EventBus(Protocol):
    """What the services need from an event bus."""

    def subscribe(
        self, event_type: type[BaseEvent], handler: EventHandler, priority: int = 0
    ) -> None: ...

    def unsubscribe(self, event_type: type[BaseEvent], handler: EventHandler) -> None: ...

    async def publish_async(self, event: BaseEvent) -> None: ...


@dataclass(order=True)
class _Subscription:
    sort_key: int = field(init=False, repr=False)
    priority: int
    handler: EventHandler = field(compare=False)
    is_async: bool = field(compare=False)

    def __post_init__(self) -> None:
        # Higher priority first
        self.sort_key = -self.priority


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class GlobalEventBus:
    """In-memory event bus with sync and async handlers.

    A handler registered for a base class also receives its subclasses, so
    subscribing to ``BaseEvent`` observes everything. Handlers run in priority
    order; a failing handler is logged and skipped.

    Example:
        >>> bus = GlobalEventBus()
        >>> @bus.on(PaymentSettled, priority=10)
        ... async def notify_seller(event): ...
        >>> await bus.publish_async(PaymentSettled(...))
    """

    def __init__(self) -> None:
        self._subscriptions: dict[type[BaseEvent], list[_Subscription]] = defaultdict(list)
        self._published: Counter[str] = Counter()

    def subscribe(
        self, event_type: type[BaseEvent], handler: EventHandler, priority: int = 0
    ) -> None:
        """Register `handler` (sync or coroutine function) for `event_type`."""
        subscription = _Subscription(
            priority=priority,
            handler=handler,
            is_async=inspect.iscoroutinefunction(handler),
        )
        self._subscriptions[event_type].append(subscription)
        self._subscriptions[event_type].sort()

        logger.debug(
            "event_handler_registered",
            event_type=event_type.__name__,
            handler=_handler_name(handler),
            priority=priority,
        )

    def on(self, event_type: type[BaseEvent], priority: int = 0) -> Callable[[_H], _H]:
        """Decorator form of :meth:`subscribe`."""

        def register(handler: _H) -> _H:
            self.subscribe(event_type, handler, priority)
            return handler

        return register

    def unsubscribe(self, event_type: type[BaseEvent], handler: EventHandler) -> None:
        self._subscriptions[event_type] = [
            s for s in self._subscriptions.get(event_type, []) if s.handler != handler
        ]

    async def publish_async(self, event: BaseEvent) -> None:
        """Deliver `event` to every matching handler, awaiting async ones in turn."""
        event_name = type(event).__name__
        self._published[event_name] += 1

        logger.info(
            "event_published",
            event_type=event_name,
            event_id=str(event.event_id),
            **event.context_data,
        )

        for subscription in self._matching(event):
            try:
                result = subscription.handler(event)
                if subscription.is_async:
                    await result
            except Exception as e:
                logger.error(
                    "event_handler_failed",
                    event_type=event_name,
                    handler=_handler_name(subscription.handler),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _matching(self, event: BaseEvent) -> list[_Subscription]:
        matched = [
            subscription
            for event_type, subscriptions in self._subscriptions.items()
            if isinstance(event, event_type)
            for subscription in subscriptions
        ]
        return sorted(matched)

    def published_count(self, event_type: type[BaseEvent] | None = None) -> int:
        """Number of events published, optionally of one type."""
        if event_type is None:
            return sum(self._published.values())
        return self._published[event_type.__name__]


_global_event_bus: GlobalEventBus | None = None


def get_global_event_bus() -> GlobalEventBus:
    """Process-wide bus used when a service is not given one."""
    global _global_event_bus
    if _global_event_bus is None:
        _global_event_bus = GlobalEventBus()
    return _global_event_bus
