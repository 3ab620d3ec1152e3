from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel


# Money and percentages travel as Decimal internally and as plain JSON numbers on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Payout settings ────────────────────────────────────────────────────────────

class PayoutConfig(CamelModel):
    """Frozen snapshot of the global payout settings, stored inside every bill."""

    model_config = ConfigDict(frozen=True)

    service_split_percentage: Money = Field(default=Decimal("70"), ge=0, le=100)
    parts_split_percentage: Money = Field(default=Decimal("10"), ge=0, le=100)
    service_gst_percentage: Money = Field(default=Decimal("18"), ge=0, le=100)
    parts_gst_percentage: Money = Field(default=Decimal("18"), ge=0, le=100)


class PayoutConfigUpdate(CamelModel):
    service_split_percentage: Any = None
    parts_split_percentage: Any = None
    service_gst_percentage: Any = None
    parts_gst_percentage: Any = None


# ── Line items ─────────────────────────────────────────────────────────────────

class LineItemCategory(str, Enum):
    """
    Where a line item comes from, and therefore which GST rate and which
    revenue-split bucket it falls into.

    Custom items are priced and split exactly like parts.
    """

    SERVICE = "service"
    PART = "part"
    CUSTOM_ITEM = "custom_item"

    @property
    def label(self) -> str:
        return {"service": "Service", "part": "Part", "custom_item": "Custom item"}[self.value]

    @property
    def accepts_gst_override(self) -> bool:
        return self is not LineItemCategory.SERVICE

    @property
    def bucket(self) -> "LineItemCategory":
        return LineItemCategory.SERVICE if self is LineItemCategory.SERVICE else LineItemCategory.PART

    def default_gst(self, config: PayoutConfig) -> Decimal:
        if self.bucket is LineItemCategory.SERVICE:
            return config.service_gst_percentage
        return config.parts_gst_percentage


class LineItemInput(CamelModel):
    """A line item exactly as the client sent it. Nothing here is trusted."""

    model_config = ConfigDict(extra="ignore")

    catalog_id: Optional[Any] = None
    name: Optional[Any] = None
    price: Optional[Any] = None
    quantity: Optional[Any] = None
    gst_percentage: Optional[Any] = None
    gst_applicable: Optional[Any] = None


class LineItem(CamelModel):
    category: LineItemCategory
    name: str = Field(min_length=1)
    unit_base_price: Money = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    gst_percentage_override: Optional[Money] = Field(default=None, ge=0, le=100)
    gst_applicable: bool = True
    is_original: bool = False
    catalog_id: Optional[str] = None


class ProcessedLineItem(LineItem):
    gst_percentage: Money
    base: Money
    gst_amount: Money = Field(ge=0)
    total: Money


# ── Booking / catalog records (owned by external stores) ──────────────────────

class BookingCharge(CamelModel):
    base: Money = Field(default=Decimal("0"), ge=0)
    visiting_charges: Money = Field(default=Decimal("0"), ge=0)
    service_name: str = "Service"


class Booking(CamelModel):
    id: str
    vendor_id: str
    base_price: Money = Field(default=Decimal("0"), ge=0)
    visiting_charges: Money = Field(default=Decimal("0"), ge=0)
    service_name: str = "Service"


class CatalogEntry(CamelModel):
    id: str
    name: str
    price: Money = Field(ge=0)
    gst_percentage: Optional[Money] = Field(default=None, ge=0, le=100)
    gst_applicable: bool = True


# ── Bill ───────────────────────────────────────────────────────────────────────

class BillStatus(str, Enum):
    DRAFT = "draft"
    GENERATED = "generated"
    PAID = "paid"


class BillRecord(CamelModel):
    booking_id: str
    vendor_id: str

    services: List[ProcessedLineItem] = []
    parts: List[ProcessedLineItem] = []
    custom_items: List[ProcessedLineItem] = []

    # Bases
    original_service_base: Money
    vendor_service_base: Money
    total_service_base: Money
    total_parts_base: Money
    visiting_charges: Money

    # GST
    original_gst: Money = Field(alias="originalGST")
    vendor_service_gst: Money = Field(alias="vendorServiceGST")
    parts_gst: Money = Field(alias="partsGST")
    total_gst: Money = Field(alias="totalGST")

    grand_total: Money

    # Split
    payout_config: PayoutConfig
    vendor_service_earning: Money
    vendor_parts_earning: Money
    vendor_total_earning: Money
    company_revenue: Money

    status: BillStatus = BillStatus.GENERATED
    generated_at: datetime
    paid_at: Optional[datetime] = None


class Financials(CamelModel):
    grand_total: Money
    total_service_base: Money
    total_parts_base: Money
    total_gst: Money = Field(alias="totalGST")
    visiting_charges: Money
    vendor_total_earning: Money
    company_revenue: Money


# ── API envelopes ──────────────────────────────────────────────────────────────

class BillRequest(CamelModel):
    services: List[LineItemInput] = []
    parts: List[LineItemInput] = []
    custom_items: List[LineItemInput] = []

    @field_validator("services", "parts", "custom_items", mode="before")
    @classmethod
    def _drop_non_lists(cls, value):
        return value if isinstance(value, list) else []


class BillResponse(BaseModel):
    success: bool
    message: str
    bill: Optional[BillRecord] = None
    financials: Optional[Financials] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    validation_mode: str
    bills_stored: int
