"""
In-memory stand-ins for the collaborators the billing service talks to:
global settings, vendor catalogs, bookings and bills.

Each store guards its data with a lock so concurrent requests never see a
half-written record.
"""

import json
import threading
from datetime import datetime
from typing import Dict, Iterable, Optional

from errors import BillFrozenError, NotFoundError, PersistenceError
from models import BillRecord, BillStatus, Booking, CatalogEntry, PayoutConfig
from utils import to_percentage, validate_percentage


PAYOUT_FIELDS = {
    "serviceSplitPercentage": "service_split_percentage",
    "partsSplitPercentage": "parts_split_percentage",
    "serviceGstPercentage": "service_gst_percentage",
    "partsGstPercentage": "parts_gst_percentage",
}


class SettingsStore:
    """The single global settings record. Hands out a fresh payout snapshot per call."""

    def __init__(self, record: Optional[dict] = None):
        self._record = dict(record or {})
        self._lock = threading.Lock()

    def get_config(self) -> PayoutConfig:
        with self._lock:
            record = dict(self._record)
        values = {}
        for key, field in PAYOUT_FIELDS.items():
            rate = to_percentage(record.get(key))
            if rate is not None:
                values[field] = rate
        return PayoutConfig(**values)

    def update(self, changes: dict) -> PayoutConfig:
        """Apply a partial update (camelCase keys). Raises ValueError on a bad value."""
        validated = {
            key: validate_percentage(value, key)
            for key, value in changes.items()
            if key in PAYOUT_FIELDS and value is not None
        }
        with self._lock:
            self._record.update(validated)
        return self.get_config()


class CatalogStore:
    def __init__(self, services: Iterable[CatalogEntry] = (), parts: Iterable[CatalogEntry] = ()):
        self._services: Dict[str, CatalogEntry] = {entry.id: entry for entry in services}
        self._parts: Dict[str, CatalogEntry] = {entry.id: entry for entry in parts}
        self._lock = threading.Lock()

    def add_service(self, entry: CatalogEntry) -> None:
        with self._lock:
            self._services[entry.id] = entry

    def add_part(self, entry: CatalogEntry) -> None:
        with self._lock:
            self._parts[entry.id] = entry

    def find_service(self, catalog_id: str) -> Optional[CatalogEntry]:
        return self.find_services([catalog_id]).get(catalog_id)

    def find_part(self, catalog_id: str) -> Optional[CatalogEntry]:
        return self.find_parts([catalog_id]).get(catalog_id)

    def find_services(self, catalog_ids: Iterable[str]) -> Dict[str, CatalogEntry]:
        with self._lock:
            return {cid: self._services[cid] for cid in set(catalog_ids) if cid in self._services}

    def find_parts(self, catalog_ids: Iterable[str]) -> Dict[str, CatalogEntry]:
        with self._lock:
            return {cid: self._parts[cid] for cid in set(catalog_ids) if cid in self._parts}


class BookingStore:
    def __init__(self, bookings: Iterable[Booking] = ()):
        self._bookings: Dict[str, Booking] = {booking.id: booking for booking in bookings}
        self._lock = threading.Lock()

    def add(self, booking: Booking) -> None:
        with self._lock:
            self._bookings[booking.id] = booking

    def get(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            return self._bookings.get(booking_id)


class BillStore:
    """One bill per booking. Writes replace the whole record atomically."""

    def __init__(self):
        self._bills: Dict[str, BillRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._bills)

    def get(self, booking_id: str) -> Optional[BillRecord]:
        with self._lock:
            bill = self._bills.get(booking_id)
        return bill.model_copy(deep=True) if bill else None

    def upsert(self, booking_id: str, bill: BillRecord) -> BillRecord:
        if bill.booking_id != booking_id:
            raise PersistenceError(f"Bill belongs to booking {bill.booking_id}, not {booking_id}")
        stored = bill.model_copy(deep=True)
        with self._lock:
            existing = self._bills.get(booking_id)
            if existing is not None and existing.status is BillStatus.PAID:
                raise BillFrozenError(f"Bill for booking {booking_id} is already paid")
            self._bills[booking_id] = stored
        return stored.model_copy(deep=True)

    def mark_paid(self, booking_id: str, paid_at: datetime) -> BillRecord:
        with self._lock:
            existing = self._bills.get(booking_id)
            if existing is None:
                raise NotFoundError(f"No bill for booking {booking_id}")
            if existing.status is BillStatus.PAID:
                raise BillFrozenError(f"Bill for booking {booking_id} is already paid")
            paid = existing.model_copy(update={"status": BillStatus.PAID, "paid_at": paid_at}, deep=True)
            self._bills[booking_id] = paid
        return paid.model_copy(deep=True)


# ── Seed data ──────────────────────────────────────────────────────────────────

def load_seed_file(path: str) -> dict:
    """Read a JSON seed with optional settings, bookings, serviceCatalog and partsCatalog sections."""
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def build_stores(seed: Optional[dict] = None):
    """Returns (settings, catalog, bookings, bills) populated from a seed dict."""
    seed = seed or {}
    settings = SettingsStore(seed.get("settings"))
    catalog = CatalogStore(
        services=[CatalogEntry.model_validate(entry) for entry in seed.get("serviceCatalog", [])],
        parts=[CatalogEntry.model_validate(entry) for entry in seed.get("partsCatalog", [])],
    )
    bookings = BookingStore([Booking.model_validate(entry) for entry in seed.get("bookings", [])])
    return settings, catalog, bookings, BillStore()
