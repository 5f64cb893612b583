"""In-process publish/subscribe channel for subscription events.

Topics are plain strings (``ORDER_ADDED``); payloads are delivered as-is.
There is no buffering for absent subscribers and nothing is persisted: a
payload reaches exactly the subscriptions registered when it is published.
Each subscription buffers at most ``max_pending`` payloads; when a slow
consumer falls that far behind, the oldest pending payload is dropped.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("modelql")

_CLOSED = object()

DEFAULT_MAX_PENDING = 1000


class Subscription:
    """Live, cancelable stream of payloads published to some topics.

    Usage:
        subscription = pubsub.subscribe("ORDER_ADDED")
        async for payload in subscription:
            ...
        # or stop early
        await subscription.aclose()
    """

    def __init__(self, pubsub: 'PubSub', topics: Tuple[str, ...], max_pending: int = DEFAULT_MAX_PENDING):
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.topics = topics
        self._pubsub = pubsub
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning(
                "modelql.pubsub: subscriber to %s is %d payloads behind, dropped the oldest",
                ", ".join(self.topics),
                self._queue.maxsize,
            )
        self._queue.put_nowait(item)

    def deliver(self, payload: Any) -> None:
        if not self._closed:
            self._put(payload)

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pubsub._remove(self)
        # wake up a consumer blocked on the queue
        self._put(_CLOSED)

    async def aclose(self) -> None:
        self.unsubscribe()

    def __aiter__(self) -> 'Subscription':
        return self

    async def __anext__(self) -> Any:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        payload = await self._queue.get()
        if payload is _CLOSED:
            raise StopAsyncIteration
        return payload


class PubSub:
    """Fan-out event bus keyed by topic name."""

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.max_pending = max_pending
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def publish(self, topic: str, payload: Any) -> int:
        """Deliver ``payload`` to every current subscriber of ``topic``.

        Returns:
            Number of subscriptions that received the payload
        """
        # iterate over a snapshot: subscribers may come and go during delivery
        subscribers = tuple(self._subscriptions.get(topic, ()))
        for subscription in subscribers:
            subscription.deliver(payload)
        logger.debug("modelql.pubsub: published %s to %d subscribers", topic, len(subscribers))
        return len(subscribers)

    def subscribe(self, *topics: str) -> Subscription:
        if not topics:
            raise ValueError("subscribe() needs at least one topic")
        subscription = Subscription(self, tuple(topics), self.max_pending)
        for topic in subscription.topics:
            self._subscriptions.setdefault(topic, []).append(subscription)
        logger.debug("modelql.pubsub: subscribed to %s", ", ".join(topics))
        return subscription

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    def _remove(self, subscription: Subscription) -> None:
        for topic in subscription.topics:
            current = self._subscriptions.get(topic)
            if not current:
                continue
            remaining = [s for s in current if s is not subscription]
            if remaining:
                self._subscriptions[topic] = remaining
            else:
                del self._subscriptions[topic]


_default_pubsub: Optional[PubSub] = None


def get_default_pubsub() -> PubSub:
    """Process-wide bus used when the caller does not supply one."""
    global _default_pubsub
    if _default_pubsub is None:
        _default_pubsub = PubSub()
    return _default_pubsub
