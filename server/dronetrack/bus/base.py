"""Realtime bus interface (port).

Subscriptions are async event sources: iterate them to receive payloads,
``close()`` them to detach. Closing ends the iteration.
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol


class Subscription(Protocol):
    """Port: one live subscription to a realtime channel."""

    @property
    def channel(self) -> str: ...

    @property
    def closed(self) -> bool: ...

    def __aiter__(self) -> AsyncIterator[dict]: ...

    def close(self) -> None: ...


class RealtimeBus(Protocol):
    """Port: document-change notifications for orders, drones and drone events."""

    def subscribe_to_order(self, order_id: str) -> Subscription: ...

    def subscribe_to_drone_position(self, drone_id: str) -> Subscription: ...

    def subscribe_to_drone_events(self, order_id: str) -> Subscription: ...
