"""In-memory document store implementing OrderStore, DroneStore and RestaurantStore.

Stands in for the hosted document database: documents are plain dicts keyed
by id, and every write publishes a change notification on the realtime bus,
the way the hosted backend does.

Order updates are published with only the fields that changed. Listeners
that need the full document (e.g. the assigned drone) must re-fetch it.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import yaml

from dronetrack.core.models import (
    DroneRecord,
    HubRecord,
    OrderRecord,
    RestaurantRecord,
    resolve_reference,
)
from dronetrack.store.base import DocumentNotFound

if TYPE_CHECKING:
    from dronetrack.bus.asyncio_bus import AsyncioRealtimeBus

log = structlog.get_logger()

COLLECTIONS = ("orders", "drones", "hubs", "restaurants")


def _plain(value: object) -> object:
    """Make a field value publishable (datetimes become ISO strings)."""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class MemoryDocumentStore:
    """Document collections held in process memory."""

    def __init__(self, bus: AsyncioRealtimeBus | None = None) -> None:
        self._bus = bus
        self._docs: dict[str, dict[str, dict]] = {name: {} for name in COLLECTIONS}

    # -- raw document access ----------------------------------------------

    def put(self, collection: str, doc_id: str, document: dict) -> dict:
        """Create or replace a document."""
        doc = {k: _plain(v) for k, v in document.items()}
        doc["id"] = doc_id
        self._docs[collection][doc_id] = doc
        self._notify(collection, doc_id, dict(doc))
        return dict(doc)

    def patch(self, collection: str, doc_id: str, changes: dict) -> dict:
        """Merge ``changes`` into an existing document."""
        doc = self._docs[collection].get(doc_id)
        if doc is None:
            raise DocumentNotFound(collection, doc_id)
        plain = {k: _plain(v) for k, v in changes.items() if k != "id"}
        doc.update(plain)
        self._notify(collection, doc_id, plain if collection == "orders" else dict(doc))
        return dict(doc)

    def get(self, collection: str, doc_id: str) -> dict:
        doc = self._docs[collection].get(doc_id)
        if doc is None:
            raise DocumentNotFound(collection, doc_id)
        return dict(doc)

    def count(self, collection: str) -> int:
        return len(self._docs[collection])

    def _notify(self, collection: str, doc_id: str, payload: dict) -> None:
        if self._bus is None:
            return
        if collection == "orders":
            self._bus.publish_order(doc_id, payload)
        elif collection == "drones":
            self._bus.publish_drone(doc_id, payload)

    def add_drone_event(self, event: dict) -> dict:
        """Record a drone event. Events are not stored, only broadcast."""
        payload = {k: _plain(v) for k, v in event.items()}
        payload["order_id"] = resolve_reference(payload.get("order_id"))
        payload["drone_id"] = resolve_reference(payload.get("drone_id"))
        if self._bus is not None:
            self._bus.publish_drone_event(payload)
        log.debug("drone_event_recorded", event_type=payload.get("event_type"),
                  order=payload["order_id"])
        return payload

    # -- OrderStore -------------------------------------------------------

    async def get_order(self, order_id: str) -> OrderRecord:
        return OrderRecord.from_document(self.get("orders", order_id))

    async def update_order_status(self, order_id: str, status: str) -> None:
        self.patch("orders", order_id, {"status": status})
        log.info("order_status_written", order=order_id, status=status)

    # -- DroneStore -------------------------------------------------------

    async def get_drone(self, drone_id: str) -> DroneRecord:
        doc = self.get("drones", drone_id)
        hub = None
        raw_hub = doc.get("hub")
        if isinstance(raw_hub, dict) and "latitude" in raw_hub:
            hub = HubRecord.from_document(raw_hub)
        else:
            hub_id = resolve_reference(raw_hub)
            if hub_id:
                try:
                    hub = HubRecord.from_document(self.get("hubs", hub_id))
                except DocumentNotFound:
                    # Dangling hub reference: callers fall back to the home position.
                    log.info("drone_hub_missing", drone=drone_id, hub=hub_id)
        return DroneRecord.from_document(doc, hub)

    async def update_drone(self, drone_id: str, fields: dict) -> None:
        self.patch("drones", drone_id, fields)

    # -- RestaurantStore --------------------------------------------------

    async def get_restaurant(self, restaurant_id: str) -> RestaurantRecord:
        return RestaurantRecord.from_document(self.get("restaurants", restaurant_id))

    # -- seeding ----------------------------------------------------------

    def load_seed(self, seed_path: str | Path) -> int:
        """Load documents from a YAML file with one list per collection."""
        with open(seed_path) as f:
            raw = yaml.safe_load(f) or {}

        loaded = 0
        for collection in COLLECTIONS:
            for doc in raw.get(collection) or []:
                doc_id = str(doc.get("id", ""))
                if not doc_id:
                    log.warning("seed_document_without_id", collection=collection)
                    continue
                self.put(collection, doc_id, doc)
                loaded += 1

        log.info("store_seeded", path=str(seed_path), documents=loaded)
        return loaded
