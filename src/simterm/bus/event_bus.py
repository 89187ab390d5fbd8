"""In-memory typed publish/subscribe bus."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from simterm.bus.events import TOPIC_PAYLOADS, LogEvent, Topic
from simterm.constants import EventLevel
from simterm.errors import BusClosedError

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))


class Subscription:
    """Deregistration token returned by ``EventBus.subscribe``."""

    def __init__(self, bus: EventBus, topic: Topic, handler: Handler):
        self._bus = bus
        self.topic = topic
        self.handler = handler
        self.active = True

    def cancel(self) -> None:
        self._bus.unsubscribe(self)

    def __repr__(self) -> str:
        state = "active" if self.active else "cancelled"
        return f"<Subscription {self.topic.value} -> {_handler_name(self.handler)} ({state})>"


class EventBus:
    """
    Routes typed events from publishers to subscribers.

    Delivery happens on a later turn of the running event loop, so ``publish``
    never waits for handlers. Events on one topic are dispatched in the order
    they were published. A failing handler is logged and does not affect the
    publisher or the other subscribers.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[Topic, list[Subscription]] = defaultdict(list)
        self._pending: dict[int, asyncio.Handle] = {}
        self._tasks: set[asyncio.Task] = set()
        self._seq = itertools.count()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def handler_count(self, topic: Topic) -> int:
        return len(self._subscriptions.get(topic, ()))

    def subscribe(self, topic: Topic, handler: Handler) -> Subscription:
        """Register ``handler`` for ``topic``. Duplicates are not collapsed."""
        if self._closed:
            raise BusClosedError(f"Cannot subscribe to {topic.value}: bus is shut down")

        sub = Subscription(self, topic, handler)
        self._subscriptions[topic].append(sub)
        logger.debug(f"Subscribed {_handler_name(handler)} to {topic.value}")
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription. Safe to call more than once."""
        subs = self._subscriptions.get(subscription.topic, [])
        for i, sub in enumerate(subs):
            if sub is subscription:
                del subs[i]
                break
        subscription.active = False

    def publish(self, topic: Topic, payload: Any) -> None:
        """Schedule delivery of ``payload`` to every current subscriber of ``topic``."""
        expected = TOPIC_PAYLOADS[topic]
        if not isinstance(payload, expected):
            raise TypeError(
                f"Topic {topic.value} expects {expected.__name__}, got {type(payload).__name__}"
            )

        if self._closed:
            logger.debug(f"Dropping {topic.value} event: bus is shut down")
            return

        subs = self._subscriptions.get(topic)
        if not subs:
            return

        loop = asyncio.get_running_loop()
        seq = next(self._seq)
        self._pending[seq] = loop.call_soon(self._dispatch, seq, topic, tuple(subs), payload)

    def log(self, level: EventLevel, message: str) -> None:
        """Publish an operator-facing log line."""
        self.publish(Topic.LOG, LogEvent(level=level, message=message, timestamp=datetime.now()))

    def _dispatch(
        self, seq: int, topic: Topic, subs: tuple[Subscription, ...], payload: Any
    ) -> None:
        self._pending.pop(seq, None)

        for sub in subs:
            if not sub.active:
                continue
            try:
                result = sub.handler(payload)
            except Exception as e:
                logger.error(
                    f"Handler {_handler_name(sub.handler)} failed on {topic.value}: {e}",
                    exc_info=True,
                )
                continue

            if asyncio.iscoroutine(result):
                task = asyncio.get_running_loop().create_task(self._run_async(sub, topic, result))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def _run_async(self, sub: Subscription, topic: Topic, coro: Awaitable[None]) -> None:
        try:
            await coro
        except Exception as e:
            logger.error(
                f"Handler {_handler_name(sub.handler)} failed on {topic.value}: {e}",
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait until all scheduled dispatches and handler tasks have completed."""
        while self._pending or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(0)

    async def shutdown(self) -> None:
        """Stop accepting work and cancel anything still in flight."""
        if self._closed:
            return
        self._closed = True

        for handle in self._pending.values():
            handle.cancel()
        dropped = len(self._pending)
        self._pending.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for subs in self._subscriptions.values():
            for sub in subs:
                sub.active = False
        self._subscriptions.clear()

        logger.info(f"Event bus shut down ({dropped} pending dispatches, {len(tasks)} tasks cancelled)")
