"""
Event Bus

A minimal publish/subscribe mechanism the ledger uses to announce
every change to its observers (tables, charts, summaries, audit log).

GUARANTEES:
- Handlers for a topic run in subscription order
- Dispatch works on a snapshot of the handler list taken at publish
  time, so (un)subscribing from inside a handler never affects the
  current pass
- A failing handler never stops the remaining handlers; its exception
  is republished on the `error` topic as a BusError
- Exceeding the per-topic handler limit only logs a warning
"""

import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import structlog


ERROR_TOPIC = "error"

Handler = Callable[[Any], Union[None, Awaitable[None]]]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it to unsubscribe()."""
    
    topic: str
    handler: Handler = field(compare=False)
    id: int = 0


@dataclass(frozen=True)
class BusError:
    """Payload of the `error` topic."""
    
    error: BaseException
    topic: str


class EventBus:
    """
    Ordered, snapshot-based publish/subscribe.
    
    Payloads are passed to handlers as a single positional argument.
    """
    
    def __init__(self, max_handlers: int = 10):
        self._handlers: dict[str, list[Subscription]] = {}
        self._ids = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()
        self.max_handlers = max_handlers
    
    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        """
        Register a handler for a topic.
        
        Raises:
            TypeError: If handler is not callable
        """
        if not callable(handler):
            raise TypeError("Handler must be callable")
        
        subscriptions = self._handlers.setdefault(topic, [])
        if self.max_handlers and len(subscriptions) >= self.max_handlers:
            logger.warning(
                "max_handlers_exceeded",
                topic=topic,
                limit=self.max_handlers,
                count=len(subscriptions) + 1,
            )
        
        subscription = Subscription(topic=topic, handler=handler, id=next(self._ids))
        subscriptions.append(subscription)
        return subscription
    
    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription. Returns False if it was not registered."""
        subscriptions = self._handlers.get(subscription.topic)
        if not subscriptions or subscription not in subscriptions:
            return False
        
        subscriptions.remove(subscription)
        if not subscriptions:
            del self._handlers[subscription.topic]
        return True
    
    def once(self, topic: str, handler: Handler) -> Subscription:
        """Register a handler that unsubscribes itself before its first call."""
        subscription: Optional[Subscription] = None
        
        def wrapper(payload: Any) -> Any:
            if subscription is not None:
                self.unsubscribe(subscription)
            return handler(payload)
        
        subscription = self.subscribe(topic, wrapper)
        return subscription
    
    def publish(self, topic: str, payload: Any = None) -> bool:
        """
        Dispatch a payload synchronously to every handler of a topic.
        
        Coroutines returned by async handlers are scheduled on the
        running loop; their failures are republished on `error`.
        
        Returns:
            True if the topic had any handlers
        """
        subscriptions = list(self._handlers.get(topic, ()))
        if not subscriptions:
            return False
        
        for subscription in subscriptions:
            try:
                result = subscription.handler(payload)
            except Exception as e:
                self._handler_failed(topic, e)
                continue
            
            if inspect.isawaitable(result):
                self._schedule(topic, result)
        
        return True
    
    async def publish_and_await(self, topic: str, payload: Any = None) -> bool:
        """
        Dispatch a payload and await async handlers one after another.
        
        All handlers have finished processing the event when this returns.
        """
        subscriptions = list(self._handlers.get(topic, ()))
        if not subscriptions:
            return False
        
        for subscription in subscriptions:
            try:
                result = subscription.handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._handler_failed(topic, e)
        
        return True
    
    async def wait_for(self, topic: str, timeout: Optional[float] = None) -> Any:
        """
        Wait for the next event on a topic and return its payload.
        
        Raises:
            asyncio.TimeoutError: If no event arrives within `timeout` seconds
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        
        def resolve(payload: Any) -> None:
            if not future.done():
                future.set_result(payload)
        
        subscription = self.once(topic, resolve)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self.unsubscribe(subscription)
    
    def listener_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, ()))
    
    def topics(self) -> list[str]:
        return list(self._handlers)
    
    def clear(self, topic: Optional[str] = None) -> None:
        """Drop the subscriptions of one topic, or of every topic."""
        if topic is None:
            self._handlers.clear()
        else:
            self._handlers.pop(topic, None)
    
    def _handler_failed(self, topic: str, error: Exception) -> None:
        logger.error(
            "handler_failed",
            topic=topic,
            error=str(error),
            error_type=type(error).__name__,
        )
        # Errors raised while handling `error` are not republished
        if topic != ERROR_TOPIC:
            self.publish(ERROR_TOPIC, BusError(error=error, topic=topic))
    
    def _schedule(self, topic: str, awaitable: Awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
            task = asyncio.ensure_future(awaitable, loop=loop)
        except RuntimeError as e:
            # No running loop to drive the coroutine
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self._handler_failed(topic, e)
            return
        
        self._tasks.add(task)
        
        def done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                self._handler_failed(topic, error)
        
        task.add_done_callback(done)
