"""
HTTP tests for the Vendor Bill Engine.

Run locally:
    pytest tests/ -v

Or with a running server (started with SEED_FILE=tests/sample_seed.json):
    BASE_URL=http://localhost:8000 pytest tests/ -v
"""

import io
import json
import os
import sys
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

# Allow imports from parent directory
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import main
from service import BillingService
from stores import build_stores, load_seed_file


SEED_PATH = os.path.join(os.path.dirname(__file__), "sample_seed.json")
VENDOR_A = {"X-Vendor-Id": "vendor-a"}
D = Decimal


@pytest.fixture
def client(monkeypatch):
    svc = BillingService(*build_stores(load_seed_file(SEED_PATH)))
    monkeypatch.setattr(main, "service", svc)
    return TestClient(main.app)


@pytest.fixture
def strict_client(monkeypatch):
    svc = BillingService(*build_stores(load_seed_file(SEED_PATH)), strict=True)
    monkeypatch.setattr(main, "service", svc)
    return TestClient(main.app)


class TestInfo:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": main.APP_VERSION, "validation_mode": "coerce", "bills_stored": 0}

    def test_root_lists_endpoints(self, client):
        data = client.get("/").json()
        assert data["name"] == "Vendor Bill Engine"
        assert "bill" in data["endpoints"]

    def test_not_ready(self, monkeypatch):
        monkeypatch.setattr(main, "service", None)
        resp = TestClient(main.app).post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        assert resp.status_code == 503


class TestCreateBill:
    def test_original_service_only(self, client):
        resp = client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["message"] == "Bill generated successfully"
        bill = data["bill"]
        assert bill["bookingId"] == "bk-1001"
        assert bill["vendorId"] == "vendor-a"
        assert bill["originalGST"] == 180
        assert bill["grandTotal"] == 1230
        assert bill["vendorTotalEarning"] == 700
        assert bill["companyRevenue"] == 530
        assert bill["status"] == "generated"
        assert bill["paidAt"] is None
        assert data["financials"] == {
            "grandTotal": 1230.0,
            "totalServiceBase": 1000.0,
            "totalPartsBase": 0.0,
            "totalGST": 180.0,
            "visitingCharges": 50.0,
            "vendorTotalEarning": 700.0,
            "companyRevenue": 530.0,
        }

    def test_full_bill(self, client):
        body = {
            "services": [{"name": "Extra wiring", "price": 200, "quantity": 1}],
            "parts": [{"name": "Filter", "price": 100, "quantity": 2, "gstPercentage": 12}],
            "customItems": [{"name": "Clamp", "price": "15.5", "gstApplicable": False}],
        }
        bill = client.post("/bookings/bk-1001/bill", json=body, headers=VENDOR_A).json()["bill"]
        assert bill["totalServiceBase"] == 1200
        assert bill["totalPartsBase"] == 215.5
        assert bill["partsGST"] == 24
        assert bill["grandTotal"] == 1705.5
        assert bill["vendorPartsEarning"] == 21.55
        assert D(str(bill["vendorTotalEarning"])) + D(str(bill["companyRevenue"])) == D(str(bill["grandTotal"]))
        assert bill["customItems"][0]["gstAmount"] == 0

    def test_null_collections_are_empty(self, client):
        resp = client.post("/bookings/bk-1001/bill", json={"services": None, "parts": "nope"}, headers=VENDOR_A)
        assert resp.status_code == 200
        assert resp.json()["bill"]["parts"] == []

    def test_missing_vendor_header(self, client):
        assert client.post("/bookings/bk-1001/bill", json={}).status_code == 401

    def test_wrong_vendor(self, client):
        resp = client.post("/bookings/bk-1002/bill", json={}, headers=VENDOR_A)
        assert resp.status_code == 403

    def test_unknown_booking(self, client):
        assert client.post("/bookings/bk-404/bill", json={}, headers=VENDOR_A).status_code == 404

    def test_unknown_catalog_entry(self, client):
        resp = client.post("/bookings/bk-1001/bill", json={"services": [{"catalogId": "svc-ghost"}]}, headers=VENDOR_A)
        assert resp.status_code == 404
        assert "svc-ghost" in resp.json()["detail"]

    def test_strict_mode_rejects_bad_line(self, strict_client):
        resp = strict_client.post("/bookings/bk-1001/bill", json={"parts": [{"name": "Pipe", "quantity": 0}]}, headers=VENDOR_A)
        assert resp.status_code == 400
        assert "parts[0]" in resp.json()["detail"]
        assert strict_client.get("/bookings/bk-1001/bill", headers=VENDOR_A).status_code == 404

    def test_unexpected_failure_is_500(self, client, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(main.service.bills, "upsert", boom)
        resp = client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to generate bill"

    @pytest.mark.parametrize("path", ["/bookings/bk-1001/bill", "/bookings/bk-1001/bill/preview"])
    @pytest.mark.parametrize("items, grand_total", [
        ([{"name": "Gold tap", "price": 1e27}], 1230),
        ([{"name": "Gold tap", "price": "1e30"}], 1230),
        ([{"name": "Screw", "price": 1, "quantity": 1e27}], 1231.18),
    ])
    def test_huge_numbers_are_coerced(self, client, path, items, grand_total):
        resp = client.post(path, json={"customItems": items}, headers=VENDOR_A)
        assert resp.status_code == 200
        bill = resp.json()["bill"]
        assert bill["grandTotal"] == grand_total
        assert bill["customItems"][0]["quantity"] == 1

    @pytest.mark.parametrize("path", ["/bookings/bk-1001/bill", "/bookings/bk-1001/bill/preview"])
    def test_strict_mode_rejects_huge_numbers(self, strict_client, path):
        resp = strict_client.post(path, json={"customItems": [{"name": "Gold tap", "price": 1e27}]}, headers=VENDOR_A)
        assert resp.status_code == 400
        assert "customItems[0]" in resp.json()["detail"]


class TestPreviewAndFetch:
    def test_preview_not_stored(self, client):
        resp = client.post("/bookings/bk-1001/bill/preview", json={}, headers=VENDOR_A)
        assert resp.status_code == 200
        assert resp.json()["bill"]["status"] == "draft"
        assert client.get("/bookings/bk-1001/bill", headers=VENDOR_A).status_code == 404

    def test_get_json(self, client):
        client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        data = client.get("/bookings/bk-1001/bill", headers=VENDOR_A).json()
        assert data["bill"]["grandTotal"] == 1230
        assert data["financials"]["companyRevenue"] == 530

    def test_get_other_vendor_forbidden(self, client):
        client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        assert client.get("/bookings/bk-1001/bill", headers={"X-Vendor-Id": "vendor-b"}).status_code == 403

    def test_get_csv(self, client):
        client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        resp = client.get("/bookings/bk-1001/bill?format=csv", headers=VENDOR_A)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert 'filename="bill_bk-1001.csv"' in resp.headers["content-disposition"]
        assert "GRAND TOTAL" in resp.content.decode("utf-8-sig")

    def test_get_excel(self, client):
        from openpyxl import load_workbook

        client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        resp = client.get("/bookings/bk-1001/bill?format=excel", headers=VENDOR_A)
        assert resp.status_code == 200
        wb = load_workbook(io.BytesIO(resp.content))
        assert wb.sheetnames == ["Bill Summary", "Line Items"]

    def test_bad_format(self, client):
        assert client.get("/bookings/bk-1001/bill?format=pdf", headers=VENDOR_A).status_code == 422

    def test_preview_unexpected_failure_is_500(self, client, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("settings unavailable")

        monkeypatch.setattr(main.service.settings, "get_config", boom)
        resp = client.post("/bookings/bk-1001/bill/preview", json={}, headers=VENDOR_A)
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to generate bill"


class TestPayment:
    def test_pay_then_frozen(self, client):
        client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        resp = client.post("/bookings/bk-1001/bill/pay", headers=VENDOR_A)
        assert resp.status_code == 200
        bill = resp.json()["bill"]
        assert bill["status"] == "paid"
        assert bill["paidAt"] is not None

        assert client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A).status_code == 409
        assert client.post("/bookings/bk-1001/bill/pay", headers=VENDOR_A).status_code == 409

    def test_pay_without_bill(self, client):
        assert client.post("/bookings/bk-1001/bill/pay", headers=VENDOR_A).status_code == 404

    def test_unexpected_failure_is_500(self, client, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("disk on fire")

        client.post("/bookings/bk-1001/bill", json={}, headers=VENDOR_A)
        monkeypatch.setattr(main.service.bills, "mark_paid", boom)
        resp = client.post("/bookings/bk-1001/bill/pay", headers=VENDOR_A)
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to mark bill as paid"
        assert client.get("/bookings/bk-1001/bill", headers=VENDOR_A).json()["bill"]["status"] == "generated"


class TestPayoutSettings:
    def test_get_defaults(self, client):
        assert client.get("/settings/payout").json() == {
            "serviceSplitPercentage": 70.0,
            "partsSplitPercentage": 10.0,
            "serviceGstPercentage": 18.0,
            "partsGstPercentage": 18.0,
        }

    def test_update_applies_to_new_bills_only(self, client):
        first = client.post("/bookings/bk-1001/bill/preview", json={}, headers=VENDOR_A).json()["bill"]
        resp = client.put("/settings/payout", json={"serviceSplitPercentage": 80})
        assert resp.status_code == 200
        assert resp.json()["serviceSplitPercentage"] == 80
        second = client.post("/bookings/bk-1001/bill/preview", json={}, headers=VENDOR_A).json()["bill"]
        assert first["vendorServiceEarning"] == 700
        assert second["vendorServiceEarning"] == 800

    def test_update_out_of_range(self, client):
        resp = client.put("/settings/payout", json={"partsGstPercentage": 250})
        assert resp.status_code == 400


# ── Integration tests (requires running server) ──────────────────────────────

BASE_URL = os.getenv("BASE_URL", "")


@pytest.mark.skipif(not BASE_URL, reason="Set BASE_URL env var to run integration tests")
class TestLiveAPI:
    def test_health(self):
        import urllib.request
        with urllib.request.urlopen(f"{BASE_URL}/health") as resp:
            data = json.loads(resp.read())
        assert data["status"] == "ok"

    def test_generate_seeded_bill(self):
        import urllib.request

        req = urllib.request.Request(
            f"{BASE_URL}/bookings/bk-1001/bill/preview",
            data=json.dumps({"services": [{"catalogId": "svc-wiring"}]}).encode(),
            headers={"Content-Type": "application/json", **VENDOR_A},
            method="POST",
        )
        with urllib.request.urlopen(req) as resp:
            result = json.loads(resp.read())

        assert result["success"] is True
        assert result["bill"]["grandTotal"] == 1466
        print("\n🧾 Preview bill:")
        print(json.dumps(result["financials"], indent=2))
