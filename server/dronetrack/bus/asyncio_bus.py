"""In-process asyncio implementation of RealtimeBus.

Each subscription owns a bounded asyncio.Queue. Publishing never blocks:
when a slow subscriber's queue is full the oldest payload is dropped, since
only the newest position matters.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import structlog

log = structlog.get_logger()

DRONE_EVENTS_CHANNEL = "drone_events"

_CLOSED = object()


def order_channel(order_id: str) -> str:
    return f"orders.{order_id}"


def drone_channel(drone_id: str) -> str:
    return f"drones.{drone_id}"


def _position_from_drone(document: dict) -> dict | None:
    """Turn a drone document change into a position payload, if it carries one."""
    lat = document.get("current_latitude")
    lng = document.get("current_longitude")
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    if isinstance(lat, bool) or isinstance(lng, bool):
        return None
    return {
        "latitude": float(lat),
        "longitude": float(lng),
        "battery_level": document.get("battery_level"),
    }


class AsyncioSubscription:
    """Subscription backed by asyncio.Queue."""

    def __init__(
        self,
        channel: str,
        on_close: Callable[[AsyncioSubscription], None],
        transform: Callable[[dict], dict | None] | None = None,
        max_size: int = 256,
    ) -> None:
        self._channel = channel
        self._on_close = on_close
        self._transform = transform
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self._closed = False

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, payload: dict) -> None:
        if self._closed:
            return
        if self._transform is not None:
            payload = self._transform(payload)
            if payload is None:
                return
        self._put(payload)

    def _put(self, item: object) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            log.debug("subscription_backlog_dropped", channel=self._channel)
        self._queue.put_nowait(item)

    def __aiter__(self) -> AsyncioSubscription:
        return self

    async def __anext__(self) -> dict:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close(self)
        self._put(_CLOSED)


class AsyncioRealtimeBus:
    """RealtimeBus where publishers and subscribers share one event loop."""

    def __init__(self, max_backlog: int = 256) -> None:
        self._channels: dict[str, set[AsyncioSubscription]] = {}
        self._max_backlog = max_backlog

    def _subscribe(
        self,
        channel: str,
        transform: Callable[[dict], dict | None] | None = None,
    ) -> AsyncioSubscription:
        sub = AsyncioSubscription(channel, self._detach, transform, self._max_backlog)
        self._channels.setdefault(channel, set()).add(sub)
        log.debug("subscribed", channel=channel)
        return sub

    def _detach(self, sub: AsyncioSubscription) -> None:
        subs = self._channels.get(sub.channel)
        if subs is None:
            return
        subs.discard(sub)
        if not subs:
            self._channels.pop(sub.channel, None)
        log.debug("unsubscribed", channel=sub.channel)

    def subscriber_count(self, channel: str | None = None) -> int:
        if channel is not None:
            return len(self._channels.get(channel, ()))
        return sum(len(subs) for subs in self._channels.values())

    # -- subscribe --------------------------------------------------------

    def subscribe_to_order(self, order_id: str) -> AsyncioSubscription:
        return self._subscribe(order_channel(order_id))

    def subscribe_to_drone_position(self, drone_id: str) -> AsyncioSubscription:
        return self._subscribe(drone_channel(drone_id), _position_from_drone)

    def subscribe_to_drone_events(self, order_id: str) -> AsyncioSubscription:
        def for_order(event: dict) -> dict | None:
            # Events for every order share one channel.
            return event if event.get("order_id") == order_id else None

        return self._subscribe(DRONE_EVENTS_CHANNEL, for_order)

    # -- publish ----------------------------------------------------------

    def publish(self, channel: str, payload: dict) -> int:
        """Deliver ``payload`` to every subscriber of ``channel``."""
        subs = list(self._channels.get(channel, ()))
        for sub in subs:
            sub.deliver(dict(payload))
        return len(subs)

    def publish_order(self, order_id: str, changes: dict) -> int:
        return self.publish(order_channel(order_id), changes)

    def publish_drone(self, drone_id: str, document: dict) -> int:
        return self.publish(drone_channel(drone_id), document)

    def publish_drone_event(self, event: dict) -> int:
        return self.publish(DRONE_EVENTS_CHANNEL, event)
