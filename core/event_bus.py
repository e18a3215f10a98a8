"""
Event Bus

In-process publish/subscribe channel.

Events are plain (typically frozen dataclass) objects; subscribers register
for an event class and may narrow delivery with a scope, e.g.
`owner_id="u1"` only receives events whose `owner_id` attribute equals "u1".
Delivery is synchronous and in subscription order.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Type

EventCallback = Callable[[Any], Any]


class Subscription:
    """Handle returned by EventBus.subscribe()"""

    def __init__(
        self,
        bus: "EventBus",
        event_type: Type,
        callback: EventCallback,
        scope: Dict[str, Any],
    ):
        self._bus = bus
        self.event_type = event_type
        self.callback = callback
        self.scope = scope
        self.active = True

    def matches(self, event: Any) -> bool:
        """True if every scope attribute equals the event's attribute"""
        for attribute, expected in self.scope.items():
            if getattr(event, attribute, None) != expected:
                return False
        return True

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __repr__(self) -> str:
        return f"Subscription({self.event_type.__name__}, scope={self.scope})"


class EventBus:
    """
    Typed publish/subscribe.

    Usage:
        bus = EventBus()
        sub = bus.subscribe(QueueChanged, on_change, owner_id="u1")
        bus.publish(QueueChanged(owner_id="u1", snapshot=...))
        sub.unsubscribe()

    Subscriber errors are logged and never reach the publisher.
    Coroutine callbacks are scheduled on the running event loop.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._subscribers: Dict[Type, List[Subscription]] = {}
        self._pending: set = set()

    def subscribe(
        self,
        event_type: Type,
        callback: EventCallback,
        **scope: Any,
    ) -> Subscription:
        """
        Register a callback for one event class.

        Args:
            event_type: Event class to receive (subclasses are not matched)
            callback: Called with the event instance
            **scope: Attribute filters; None values are ignored

        Returns:
            Subscription handle
        """
        filters = {key: value for key, value in scope.items() if value is not None}
        subscription = Subscription(self, event_type, callback, filters)
        self._subscribers.setdefault(event_type, []).append(subscription)
        self.logger.debug(f"Subscribed {subscription}")
        return subscription

    def publish(self, event: Any) -> int:
        """
        Deliver an event to matching subscribers.

        Returns:
            Number of subscribers the event was delivered to
        """
        delivered = 0
        # Copy: callbacks may unsubscribe while we iterate
        for subscription in list(self._subscribers.get(type(event), ())):
            if not subscription.active or not subscription.matches(event):
                continue
            delivered += 1
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception as e:
                self.logger.error(
                    f"Error in {type(event).__name__} subscriber: {e}",
                    exc_info=True,
                )
        return delivered

    def subscriber_count(self, event_type: Optional[Type] = None) -> int:
        if event_type is not None:
            return len(self._subscribers.get(event_type, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    def clear(self) -> None:
        """Drop every subscription"""
        for subscriptions in self._subscribers.values():
            for subscription in subscriptions:
                subscription.active = False
        self._subscribers.clear()

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscribers.get(subscription.event_type, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)

    def _schedule(self, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
            task = asyncio.ensure_future(awaitable, loop=loop)
        except RuntimeError as e:
            # No running loop - close the coroutine so it isn't left un-awaited
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.logger.error(f"Cannot schedule async subscriber: {e}")
            return
        self._pending.add(task)
        task.add_done_callback(self._on_async_done)

    def _on_async_done(self, task: "asyncio.Future") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Error in async subscriber: {error}")
