import io
import logging
import os
from contextlib import asynccontextmanager
from typing import Literal, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

load_dotenv()

from billing import financials_for
from errors import (
    BillFrozenError,
    BillingError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from exports import to_csv, to_excel
from mcp_server import build_mcp
from models import BillRecord, BillRequest, BillResponse, HealthResponse, PayoutConfig, PayoutConfigUpdate
from service import BillingService


APP_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


# ── Service wiring ─────────────────────────────────────────────────────────────

service: BillingService | None = None


def get_service() -> BillingService:
    if service is None:
        raise HTTPException(status_code=503, detail="Billing service not ready")
    return service


def current_vendor(x_vendor_id: Optional[str] = Header(default=None)) -> str:
    """Identity of the calling vendor, set by the upstream auth layer."""
    if not x_vendor_id:
        raise HTTPException(status_code=401, detail="Missing X-Vendor-Id header")
    return x_vendor_id


# ── MCP Server (mounted inside FastAPI, same port) ────────────────────

mcp = build_mcp(get_service)


# ── Lifespan ───────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    global service
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if service is None:
        service = BillingService.from_env()
    print(f"✅ Vendor Bill Engine ready | validation: {service.validation_mode}")
    yield
    print("🛑 Shutting down.")


# ── App ────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Vendor Bill Engine",
    description=(
        "Generates itemised vendor bills for home-service bookings: original service, "
        "vendor-added services, parts and custom items, with GST and the "
        "vendor / company revenue split.\n\n"
        "Bills can be downloaded as **JSON**, **CSV**, or **Excel**. "
        "Exposes **MCP** (`/mcp/sse`) on the same URL."
    ),
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/mcp", mcp.http_app(transport="sse"))


def _http_error(exc: BillingError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, InvalidInputError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, BillFrozenError):
        return HTTPException(status_code=409, detail=str(exc))
    logger.error("Bill operation failed: %s", exc)
    return HTTPException(status_code=500, detail="Failed to generate bill")


# ── Info ───────────────────────────────────────────────────────────────────────

@app.get("/", tags=["Info"])
def root(request: Request):
    base = str(request.base_url).rstrip("/")
    return {
        "name": "Vendor Bill Engine",
        "version": APP_VERSION,
        "validation": service.validation_mode if service else "not loaded",
        "endpoints": {
            "docs":     f"{base}/docs",
            "health":   f"{base}/health",
            "bill":     f"{base}/bookings/{{bookingId}}/bill?format=json|csv|excel",
            "preview":  f"{base}/bookings/{{bookingId}}/bill/preview",
            "pay":      f"{base}/bookings/{{bookingId}}/bill/pay",
            "payout":   f"{base}/settings/payout",
            "mcp":      f"{base}/mcp/sse",
        },
    }


@app.get("/health", response_model=HealthResponse, tags=["Info"])
def health():
    return HealthResponse(
        status="ok",
        version=APP_VERSION,
        validation_mode=service.validation_mode if service else "not loaded",
        bills_stored=len(service.bills) if service else 0,
    )


# ── Core: Bills ────────────────────────────────────────────────────────────────

@app.post("/bookings/{booking_id}/bill", response_model=BillResponse, tags=["Bill"])
def create_or_update_bill(
    booking_id: str,
    body: BillRequest,
    vendor_id: str = Depends(current_vendor),
    svc: BillingService = Depends(get_service),
):
    """
    Generate the bill for a booking from the vendor's extra line items.

    Re-posting replaces the whole previous bill. A paid bill cannot be regenerated.
    """
    try:
        bill = svc.generate(booking_id, vendor_id, body)
    except BillingError as e:
        raise _http_error(e)
    except Exception:
        logger.exception("Create bill error for booking %s", booking_id)
        raise HTTPException(status_code=500, detail="Failed to generate bill")

    return BillResponse(
        success=True,
        message="Bill generated successfully",
        bill=bill,
        financials=financials_for(bill),
    )


@app.post("/bookings/{booking_id}/bill/preview", response_model=BillResponse, tags=["Bill"])
def preview_bill(
    booking_id: str,
    body: BillRequest,
    vendor_id: str = Depends(current_vendor),
    svc: BillingService = Depends(get_service),
):
    """Compute a DRAFT bill without storing it."""
    try:
        bill = svc.preview(booking_id, vendor_id, body)
    except BillingError as e:
        raise _http_error(e)
    except Exception:
        logger.exception("Preview bill error for booking %s", booking_id)
        raise HTTPException(status_code=500, detail="Failed to generate bill")

    return BillResponse(
        success=True,
        message="Bill preview",
        bill=bill,
        financials=financials_for(bill),
    )


@app.get("/bookings/{booking_id}/bill", tags=["Bill"])
def get_bill(
    booking_id: str,
    format: Literal["json", "csv", "excel"] = Query(
        default="json",
        description="Output format: **json** (default) | **csv** (download) | **excel** (download)",
    ),
    vendor_id: str = Depends(current_vendor),
    svc: BillingService = Depends(get_service),
):
    """
    Fetch the last generated bill for a booking.

    - `format=json`  → Structured JSON response
    - `format=csv`   → Downloadable `.csv` file
    - `format=excel` → Downloadable formatted `.xlsx` file
    """
    try:
        bill = svc.get_bill(booking_id, vendor_id)
    except BillingError as e:
        raise _http_error(e)

    if format == "csv":
        return StreamingResponse(
            content=io.BytesIO(to_csv(bill)),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="bill_{booking_id}.csv"'},
        )

    if format == "excel":
        return StreamingResponse(
            content=io.BytesIO(to_excel(bill)),
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={"Content-Disposition": f'attachment; filename="bill_{booking_id}.xlsx"'},
        )

    return BillResponse(
        success=True,
        message="Bill found",
        bill=bill,
        financials=financials_for(bill),
    ).model_dump(mode="json", by_alias=True)


@app.post("/bookings/{booking_id}/bill/pay", response_model=BillResponse, tags=["Bill"])
def pay_bill(
    booking_id: str,
    vendor_id: str = Depends(current_vendor),
    svc: BillingService = Depends(get_service),
):
    """Mark the bill as paid. A paid bill is frozen."""
    try:
        bill: BillRecord = svc.mark_paid(booking_id, vendor_id)
    except BillingError as e:
        raise _http_error(e)
    except Exception:
        logger.exception("Pay bill error for booking %s", booking_id)
        raise HTTPException(status_code=500, detail="Failed to mark bill as paid")

    return BillResponse(
        success=True,
        message="Bill marked as paid",
        bill=bill,
        financials=financials_for(bill),
    )


# ── Payout settings ────────────────────────────────────────────────────────────

@app.get("/settings/payout", response_model=PayoutConfig, tags=["Settings"])
def get_payout_settings(svc: BillingService = Depends(get_service)):
    return svc.payout_config()


@app.put("/settings/payout", response_model=PayoutConfig, tags=["Settings"])
def update_payout_settings(
    body: PayoutConfigUpdate,
    svc: BillingService = Depends(get_service),
):
    """
    Partially update the global payout percentages (each 0–100).
    Bills already generated keep the snapshot they were built with.
    """
    try:
        return svc.update_payout_config(body.model_dump(by_alias=True, exclude_none=True))
    except BillingError as e:
        raise _http_error(e)


# ── Entry point ────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("APP_ENV", "development") == "development",
    )
