"""In-process domain event system.

Example:
    >>> from shiftmarket.core.events import get_global_event_bus
    >>> from shiftmarket.lightning.domain.events import PaymentSettled
    >>> get_global_event_bus().subscribe(PaymentSettled, notify_seller)
"""

from .base import BaseEvent, EventBus, GlobalEventBus, get_global_event_bus

__all__ = [
    "BaseEvent",
    "EventBus",
    "GlobalEventBus",
    "get_global_event_bus",
]
