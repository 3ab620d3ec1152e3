"""
MCP Server for the Vendor Bill Engine
-------------------------------------
Exposes bill generation and lookup as MCP tools so any MCP-compatible
client (Claude Desktop, Cursor, Windsurf, etc.) can call them directly.

Run modes:
  stdio  (Claude Desktop):  python mcp_server.py
  http   (remote / URL):    python mcp_server.py --http
"""

import argparse
from typing import Callable, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

load_dotenv()

from billing import financials_for
from models import BillRequest
from service import BillingService


INSTRUCTIONS = (
    "Generates itemised vendor bills for home-service bookings. "
    "Send the vendor's extra services, parts and custom items for a booking "
    "and get back base amounts, GST, grand total and the vendor / company revenue split."
)


def build_mcp(get_service: Callable[[], BillingService]) -> FastMCP:
    """Create the MCP server, resolving the billing service lazily on each call."""
    mcp = FastMCP(name="Vendor Bill Engine", instructions=INSTRUCTIONS)

    @mcp.tool()
    def generate_bill(
        booking_id: str,
        vendor_id: str,
        services: Optional[List[dict]] = None,
        parts: Optional[List[dict]] = None,
        custom_items: Optional[List[dict]] = None,
    ) -> dict:
        """
        Generate (or regenerate) the bill for a booking.

        Args:
            booking_id:   Booking to bill.
            vendor_id:    Vendor assigned to the booking.
            services:     Extra services, each {catalogId?, name?, price?, quantity?}.
            parts:        Parts, each {catalogId?, name?, price?, quantity?, gstPercentage?}.
            custom_items: Ad-hoc items, each {name, price, quantity?, gstPercentage?, gstApplicable?}.

        Returns:
            The stored bill and a financials summary.
        """
        request = BillRequest(services=services or [], parts=parts or [], custom_items=custom_items or [])
        bill = get_service().generate(booking_id, vendor_id, request)
        return {
            "bill": bill.model_dump(mode="json", by_alias=True),
            "financials": financials_for(bill).model_dump(mode="json", by_alias=True),
        }

    @mcp.tool()
    def get_bill(booking_id: str, vendor_id: str) -> dict:
        """Return the last generated bill for a booking."""
        bill = get_service().get_bill(booking_id, vendor_id)
        return bill.model_dump(mode="json", by_alias=True)

    @mcp.tool()
    def get_payout_config() -> dict:
        """
        Returns the payout percentages new bills will be generated with.
        """
        return get_service().payout_config().model_dump(mode="json", by_alias=True)

    return mcp


_service: BillingService | None = None


def get_service() -> BillingService:
    global _service
    if _service is None:
        _service = BillingService.from_env()
    return _service


mcp = build_mcp(get_service)


# ── Entry point ────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Vendor Bill Engine MCP Server")
    parser.add_argument(
        "--http",
        action="store_true",
        help="Run in HTTP mode (exposes a URL). Default is stdio mode for Claude Desktop.",
    )
    parser.add_argument("--host", default="0.0.0.0", help="HTTP host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8001, help="HTTP port (default: 8001)")
    args = parser.parse_args()

    if args.http:
        import uvicorn
        print(f"🚀 MCP Server running at http://{args.host}:{args.port}/sse")
        uvicorn.run(mcp.http_app(transport="sse"), host=args.host, port=args.port)
    else:
        # stdio, used by Claude Desktop, Cursor, Windsurf
        mcp.run(transport="stdio")
