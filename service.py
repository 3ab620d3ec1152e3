import logging
import os
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from billing import booking_charge, generate_bill, sanitize_line_item
from errors import BillFrozenError, ForbiddenError, InvalidInputError, NotFoundError
from models import (
    BillRecord,
    BillRequest,
    BillStatus,
    Booking,
    LineItem,
    LineItemCategory,
    LineItemInput,
    PayoutConfig,
)
from stores import BillStore, BookingStore, CatalogStore, SettingsStore, build_stores, load_seed_file


logger = logging.getLogger(__name__)

VALIDATION_MODES = ("coerce", "strict")


class BillingService:
    """
    Generates, stores and settles vendor bills.

    Fetches the payout snapshot once per generation, resolves every catalog
    reference in one batch per catalog, and writes the finished bill with a
    single upsert so a failure never leaves a partial record.
    """

    def __init__(
        self,
        settings: SettingsStore,
        catalog: CatalogStore,
        bookings: BookingStore,
        bills: BillStore,
        strict: bool = False,
    ):
        self.settings = settings
        self.catalog = catalog
        self.bookings = bookings
        self.bills = bills
        self.strict = strict

    @classmethod
    def from_env(cls) -> "BillingService":
        mode = os.getenv("LINE_ITEM_VALIDATION", "coerce").lower()
        if mode not in VALIDATION_MODES:
            raise ValueError(
                f"Unknown LINE_ITEM_VALIDATION '{mode}'. Set it to 'coerce' or 'strict'."
            )
        seed_file = os.getenv("SEED_FILE")
        seed = load_seed_file(seed_file) if seed_file else None
        return cls(*build_stores(seed), strict=mode == "strict")

    @property
    def validation_mode(self) -> str:
        return "strict" if self.strict else "coerce"

    # ── Lookups ────────────────────────────────────────────────────────────────

    def _booking_for(self, booking_id: str, vendor_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        if booking.vendor_id != vendor_id:
            logger.warning("Vendor %s tried to bill booking %s owned by %s", vendor_id, booking_id, booking.vendor_id)
            raise ForbiddenError("Not authorized for this booking")
        return booking

    @staticmethod
    def _catalog_ids(items: List[LineItemInput]) -> List[str]:
        return [str(item.catalog_id) for item in items if item.catalog_id not in (None, "")]

    def _sanitize(self, request: BillRequest) -> Tuple[List[LineItem], List[LineItem], List[LineItem]]:
        service_ids = self._catalog_ids(request.services)
        part_ids = self._catalog_ids(request.parts)
        services_found = self.catalog.find_services(service_ids)
        parts_found = self.catalog.find_parts(part_ids)

        missing = [f"service {cid}" for cid in service_ids if cid not in services_found]
        missing += [f"part {cid}" for cid in part_ids if cid not in parts_found]
        if missing:
            raise NotFoundError("Catalog entry not found: " + ", ".join(dict.fromkeys(missing)))

        def lookup(item: LineItemInput, found: dict):
            if item.catalog_id in (None, ""):
                return None
            return found[str(item.catalog_id)]

        services = [
            sanitize_line_item(item, LineItemCategory.SERVICE, lookup(item, services_found), self.strict, f"services[{i}]")
            for i, item in enumerate(request.services)
        ]
        parts = [
            sanitize_line_item(item, LineItemCategory.PART, lookup(item, parts_found), self.strict, f"parts[{i}]")
            for i, item in enumerate(request.parts)
        ]
        custom_items = [
            sanitize_line_item(item, LineItemCategory.CUSTOM_ITEM, None, self.strict, f"customItems[{i}]")
            for i, item in enumerate(request.custom_items)
        ]
        return services, parts, custom_items

    # ── Bills ──────────────────────────────────────────────────────────────────

    def compute(
        self,
        booking_id: str,
        vendor_id: str,
        request: BillRequest,
        status: BillStatus = BillStatus.GENERATED,
    ) -> BillRecord:
        booking = self._booking_for(booking_id, vendor_id)
        services, parts, custom_items = self._sanitize(request)
        config = self.settings.get_config()
        return generate_bill(
            booking_charge(booking.base_price, booking.visiting_charges, booking.service_name),
            services,
            parts,
            custom_items,
            config,
            booking_id=booking.id,
            vendor_id=booking.vendor_id,
            status=status,
        )

    def generate(self, booking_id: str, vendor_id: str, request: BillRequest) -> BillRecord:
        """Compute and store the bill, replacing any earlier unpaid one."""
        existing = self.bills.get(booking_id)
        if existing is not None and existing.status is BillStatus.PAID:
            raise BillFrozenError(f"Bill for booking {booking_id} is already paid")

        bill = self.compute(booking_id, vendor_id, request)
        stored = self.bills.upsert(booking_id, bill)
        logger.info(
            "%s bill for booking %s (vendor %s): grand total %s, vendor %s, company %s",
            "Regenerated" if existing else "Generated",
            booking_id,
            vendor_id,
            stored.grand_total,
            stored.vendor_total_earning,
            stored.company_revenue,
        )
        return stored

    def preview(self, booking_id: str, vendor_id: str, request: BillRequest) -> BillRecord:
        """Same computation as generate(), returned as a DRAFT and never stored."""
        return self.compute(booking_id, vendor_id, request, status=BillStatus.DRAFT)

    def get_bill(self, booking_id: str, vendor_id: Optional[str] = None) -> BillRecord:
        bill = self.bills.get(booking_id)
        if bill is None:
            raise NotFoundError(f"Bill for booking {booking_id} not found")
        if vendor_id is not None and bill.vendor_id != vendor_id:
            raise ForbiddenError("Not authorized for this booking")
        return bill

    def mark_paid(self, booking_id: str, vendor_id: str, paid_at: Optional[datetime] = None) -> BillRecord:
        self.get_bill(booking_id, vendor_id)
        bill = self.bills.mark_paid(booking_id, paid_at or datetime.now(timezone.utc))
        logger.info("Bill for booking %s marked paid (%s)", booking_id, bill.grand_total)
        return bill

    # ── Payout settings ────────────────────────────────────────────────────────

    def payout_config(self) -> PayoutConfig:
        return self.settings.get_config()

    def update_payout_config(self, changes: dict) -> PayoutConfig:
        try:
            config = self.settings.update(changes)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        logger.info("Payout settings updated: %s", config.model_dump(mode="json", by_alias=True))
        return config
