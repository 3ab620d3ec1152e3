"""
Bill computation engine.

Turns a booking's original charge plus the vendor's extra line items into a
fully itemised bill with a vendor / platform revenue split.

Rounding happens half-up to 0.01 after every multiplication and at every
aggregate: per line GST, per line total, each bucket sum, the grand total and
each earning. Company revenue is always the residual of the grand total, so
vendor earning + company revenue equals the grand total exactly.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from errors import BillInvariantError, LineItemValidationError
from models import (
    BillRecord,
    BillStatus,
    BookingCharge,
    CatalogEntry,
    Financials,
    LineItem,
    LineItemCategory,
    LineItemInput,
    PayoutConfig,
    ProcessedLineItem,
)
from utils import HUNDRED, ZERO, is_blank, round2, sum2, to_decimal, to_percentage, to_quantity


# Keeps price x quantity and every bill sum well inside the 28-digit Decimal context.
MAX_PRICE = Decimal("1000000000000")
MAX_QUANTITY = 1_000_000


# ── Sanitization ───────────────────────────────────────────────────────────────

def _price(raw, where: str, strict: bool) -> Decimal:
    if is_blank(raw):
        return ZERO
    price = to_decimal(raw)
    if price is None or price < 0 or price > MAX_PRICE:
        if strict:
            raise LineItemValidationError(
                f"{where}: price must be a number between 0 and {MAX_PRICE}, got {raw!r}"
            )
        return ZERO
    return round2(price)


def _quantity(raw, where: str, strict: bool) -> int:
    if is_blank(raw):
        return 1
    number = to_decimal(raw)
    if strict and (
        number is None or number < 1 or number > MAX_QUANTITY or number != number.to_integral_value()
    ):
        raise LineItemValidationError(
            f"{where}: quantity must be a whole number between 1 and {MAX_QUANTITY}, got {raw!r}"
        )
    quantity = to_quantity(raw)
    if quantity is None or quantity < 1 or quantity > MAX_QUANTITY:
        return 1
    return quantity


def _gst_override(raw, where: str, strict: bool) -> Optional[Decimal]:
    if is_blank(raw):
        return None
    rate = to_percentage(raw)
    if rate is None and strict:
        raise LineItemValidationError(f"{where}: gstPercentage must be between 0 and 100, got {raw!r}")
    return rate


def sanitize_line_item(
    raw: LineItemInput,
    category: LineItemCategory,
    catalog_entry: Optional[CatalogEntry] = None,
    strict: bool = False,
    where: str = "item",
) -> LineItem:
    """
    Turn an untrusted client line into a typed LineItem.

    A catalog entry, when given, is authoritative for name and price (and for
    GST on parts). Otherwise malformed numbers fall back to price 0,
    quantity 1 and the category GST rate, unless ``strict`` is set, in which
    case they raise LineItemValidationError.
    """
    quantity = _quantity(raw.quantity, where, strict)

    if catalog_entry is not None:
        return LineItem(
            category=category,
            name=catalog_entry.name,
            unit_base_price=round2(catalog_entry.price),
            quantity=quantity,
            gst_percentage_override=(
                catalog_entry.gst_percentage if category.accepts_gst_override else None
            ),
            gst_applicable=catalog_entry.gst_applicable or category is LineItemCategory.SERVICE,
            catalog_id=catalog_entry.id,
        )

    if is_blank(raw.name):
        if strict:
            raise LineItemValidationError(f"{where}: name is required")
        name = category.label
    else:
        name = str(raw.name).strip()

    override = None
    gst_applicable = True
    if category.accepts_gst_override:
        override = _gst_override(raw.gst_percentage, where, strict)
        gst_applicable = raw.gst_applicable is not False

    return LineItem(
        category=category,
        name=name,
        unit_base_price=_price(raw.price, where, strict),
        quantity=quantity,
        gst_percentage_override=override,
        gst_applicable=gst_applicable,
    )


def booking_charge(base, visiting_charges=None, service_name=None) -> BookingCharge:
    """Build the original-service charge from booking fields, coercing bad numbers to 0."""
    return BookingCharge(
        base=_price(base, "booking", strict=False),
        visiting_charges=_price(visiting_charges, "booking", strict=False),
        service_name=str(service_name).strip() if not is_blank(service_name) else LineItemCategory.SERVICE.label,
    )


# ── Line processing ────────────────────────────────────────────────────────────

def process_line_item(item: LineItem, category_gst_default: Decimal) -> ProcessedLineItem:
    """Price one line: base, GST at the resolved rate, and GST-inclusive total."""
    if not item.gst_applicable:
        rate = ZERO
    elif item.gst_percentage_override is not None and item.category.accepts_gst_override:
        rate = item.gst_percentage_override
    else:
        rate = category_gst_default

    base = round2(item.unit_base_price * item.quantity)
    gst_amount = round2(base * rate / HUNDRED)
    return ProcessedLineItem(
        **item.model_dump(),
        gst_percentage=rate,
        base=base,
        gst_amount=gst_amount,
        total=round2(base + gst_amount),
    )


def build_original_line(charge: BookingCharge, config: PayoutConfig) -> ProcessedLineItem:
    item = LineItem(
        category=LineItemCategory.SERVICE,
        name=charge.service_name or LineItemCategory.SERVICE.label,
        unit_base_price=round2(charge.base),
        quantity=1,
        is_original=True,
    )
    return process_line_item(item, LineItemCategory.SERVICE.default_gst(config))


# ── Aggregation ────────────────────────────────────────────────────────────────

def _process_all(items: Sequence[LineItem], category: LineItemCategory, config: PayoutConfig) -> List[ProcessedLineItem]:
    default_rate = category.default_gst(config)
    processed = []
    for item in items:
        if item.category is not category:
            item = item.model_copy(update={"category": category})
        processed.append(process_line_item(item, default_rate))
    return processed


def generate_bill(
    charge: BookingCharge,
    vendor_services: Sequence[LineItem],
    parts: Sequence[LineItem],
    custom_items: Sequence[LineItem],
    config: PayoutConfig,
    *,
    booking_id: str,
    vendor_id: str,
    status: BillStatus = BillStatus.GENERATED,
    now: Optional[datetime] = None,
) -> BillRecord:
    """
    Compute the complete bill for one booking.

    Pure: the same inputs and config always give the same record apart from
    ``generated_at``. Parts and custom items share one bucket for base, GST
    and the parts payout rate.
    """
    original = build_original_line(charge, config)
    extra_services = _process_all(vendor_services, LineItemCategory.SERVICE, config)
    processed_parts = _process_all(parts, LineItemCategory.PART, config)
    processed_custom = _process_all(custom_items, LineItemCategory.CUSTOM_ITEM, config)
    parts_bucket = processed_parts + processed_custom

    original_service_base = original.base
    vendor_service_base = sum2(line.base for line in extra_services)
    total_service_base = round2(original_service_base + vendor_service_base)
    total_parts_base = sum2(line.base for line in parts_bucket)
    visiting_charges = round2(charge.visiting_charges)

    original_gst = original.gst_amount
    vendor_service_gst = sum2(line.gst_amount for line in extra_services)
    parts_gst = sum2(line.gst_amount for line in parts_bucket)
    total_gst = round2(original_gst + vendor_service_gst + parts_gst)

    grand_total = round2(total_service_base + total_parts_base + total_gst + visiting_charges)

    vendor_service_earning = round2(total_service_base * config.service_split_percentage / HUNDRED)
    vendor_parts_earning = round2(total_parts_base * config.parts_split_percentage / HUNDRED)
    vendor_total_earning = round2(vendor_service_earning + vendor_parts_earning)
    company_revenue = round2(grand_total - vendor_total_earning)

    bill = BillRecord(
        booking_id=booking_id,
        vendor_id=vendor_id,
        services=[original] + extra_services,
        parts=processed_parts,
        custom_items=processed_custom,
        original_service_base=original_service_base,
        vendor_service_base=vendor_service_base,
        total_service_base=total_service_base,
        total_parts_base=total_parts_base,
        visiting_charges=visiting_charges,
        original_gst=original_gst,
        vendor_service_gst=vendor_service_gst,
        parts_gst=parts_gst,
        total_gst=total_gst,
        grand_total=grand_total,
        payout_config=config,
        vendor_service_earning=vendor_service_earning,
        vendor_parts_earning=vendor_parts_earning,
        vendor_total_earning=vendor_total_earning,
        company_revenue=company_revenue,
        status=status,
        generated_at=now or datetime.now(timezone.utc),
    )
    validate_bill(bill)
    return bill


# ── Consistency checks ─────────────────────────────────────────────────────────

def _line_problems(label: str, line: ProcessedLineItem) -> List[str]:
    problems = []
    if line.base != round2(line.unit_base_price * line.quantity):
        problems.append(f"{label}: base {line.base} != price x quantity")
    if line.gst_amount < 0:
        problems.append(f"{label}: negative GST {line.gst_amount}")
    if line.total != round2(line.base + line.gst_amount):
        problems.append(f"{label}: total {line.total} != base + GST")
    return problems


def validate_bill(bill: BillRecord) -> None:
    """Raise BillInvariantError listing every way the bill fails to add up."""
    problems = []
    config = bill.payout_config

    if not bill.services or not bill.services[0].is_original:
        problems.append("first service line must be the original booking service")
    if sum(1 for line in bill.services if line.is_original) != 1:
        problems.append("exactly one original service line is required")
    if any(line.is_original for line in bill.parts + bill.custom_items):
        problems.append("parts and custom items cannot be original lines")

    for bucket, lines in (("services", bill.services), ("parts", bill.parts), ("customItems", bill.custom_items)):
        for index, line in enumerate(lines):
            problems.extend(_line_problems(f"{bucket}[{index}]", line))

    extras = [line for line in bill.services if not line.is_original]
    originals = [line for line in bill.services if line.is_original]
    parts_bucket = bill.parts + bill.custom_items

    expected = {
        "originalServiceBase": sum2(line.base for line in originals),
        "vendorServiceBase": sum2(line.base for line in extras),
        "totalServiceBase": round2(bill.original_service_base + bill.vendor_service_base),
        "totalPartsBase": sum2(line.base for line in parts_bucket),
        "originalGST": sum2(line.gst_amount for line in originals),
        "vendorServiceGST": sum2(line.gst_amount for line in extras),
        "partsGST": sum2(line.gst_amount for line in parts_bucket),
        "totalGST": round2(bill.original_gst + bill.vendor_service_gst + bill.parts_gst),
        "grandTotal": round2(bill.total_service_base + bill.total_parts_base + bill.total_gst + bill.visiting_charges),
        "vendorServiceEarning": round2(bill.total_service_base * config.service_split_percentage / HUNDRED),
        "vendorPartsEarning": round2(bill.total_parts_base * config.parts_split_percentage / HUNDRED),
        "vendorTotalEarning": round2(bill.vendor_service_earning + bill.vendor_parts_earning),
    }
    actual = bill.model_dump(by_alias=True)
    for field, value in expected.items():
        if actual[field] != value:
            problems.append(f"{field} is {actual[field]}, expected {value}")

    if bill.vendor_total_earning + bill.company_revenue != bill.grand_total:
        problems.append("vendorTotalEarning + companyRevenue does not equal grandTotal")
    if bill.grand_total < 0:
        problems.append(f"grandTotal is negative ({bill.grand_total})")

    if problems:
        raise BillInvariantError(f"Bill for booking {bill.booking_id} is inconsistent: " + "; ".join(problems))


def financials_for(bill: BillRecord) -> Financials:
    return Financials(
        grand_total=bill.grand_total,
        total_service_base=bill.total_service_base,
        total_parts_base=bill.total_parts_base,
        total_gst=bill.total_gst,
        visiting_charges=bill.visiting_charges,
        vendor_total_earning=bill.vendor_total_earning,
        company_revenue=bill.company_revenue,
    )
