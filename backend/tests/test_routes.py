"""
Route tests with dependency overrides (no database, no network).
"""
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from fulfillment.api import deps
from fulfillment.core.database import get_db
from fulfillment.core.exceptions import ShipwayAPIError
from fulfillment.main import app
from fulfillment.models import ClaimStatus, Vendor, VendorRole
from fulfillment.services.auto_reversal import AutoReversalSweeper

from fakes import make_line, remote_order


def make_vendor(warehouse_id="W1", role=VendorRole.VENDOR.value) -> Vendor:
    return Vendor(name=f"Vendor {warehouse_id}", warehouse_id=warehouse_id, role=role, token="t", active_session=True)


@pytest.fixture
def client(store, shipway):
    """TestClient wired to the in-memory store and scripted Shipway."""
    @asynccontextmanager
    async def open_store():
        yield store

    sweeper = MagicMock(spec=AutoReversalSweeper)
    sweeper.run = AsyncMock(return_value={"success": True, "skipped": False, "auto_reversed": 2})
    sweeper.get_stats.return_value = {"total_runs": 1}

    app.dependency_overrides[deps.get_current_vendor] = lambda: make_vendor()
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_shipway] = lambda: shipway
    app.dependency_overrides[deps.get_store_factory] = lambda: open_store
    app.dependency_overrides[deps.get_sweeper] = lambda: sweeper
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_admin():
    app.dependency_overrides[deps.get_current_vendor] = lambda: make_vendor("ADMIN", VendorRole.ADMIN.value)


class TestVendorRoutes:

    def test_claim(self, client, store):
        store.lines["L1"] = make_line("L1", "O1")

        response = client.post("/api/orders/claim", json={"unique_id": "L1"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == ClaimStatus.CLAIMED.value
        assert body["data"]["claimed_by"] == "W1"

    def test_claim_taken_line_is_400(self, client, store):
        store.lines["L1"] = make_line("L1", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W2")

        response = client.post("/api/orders/claim", json={"unique_id": "L1"})

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "code": "INVALID_STATE",
            "message": "Order line L1 is not available for claiming (status: claimed)",
        }

    def test_claim_unknown_line_is_404(self, client):
        response = client.post("/api/orders/claim", json={"unique_id": "nope"})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_invalid_body_is_400(self, client):
        response = client.post("/api/orders/claim", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_bulk_claim(self, client, store):
        store.lines["L1"] = make_line("L1", "O1")

        response = client.post("/api/orders/bulk-claim", json={"unique_ids": ["L1", "L2"]})

        data = response.json()["data"]
        assert data["successful"] == ["L1"]
        assert data["failed"][0]["id"] == "L2"

    def test_reverse_wrong_owner_is_403(self, client, store):
        store.lines["L1"] = make_line("L1", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W2")

        response = client.post("/api/orders/reverse", json={"unique_id": "L1"})

        assert response.status_code == 403

    def test_grouped(self, client, store):
        store.lines["L1"] = make_line("L1", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1")

        response = client.get("/api/orders/grouped")

        assert response.json()["total"] == 1

    def test_download_label(self, client, store):
        store.lines["L1"] = make_line("L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1")

        response = client.post("/api/orders/download-label", json={"order_id": "O2"})

        assert response.status_code == 200
        assert response.json()["data"]["label_url"] == "https://labels.example/O2.pdf"

    def test_download_label_failure_is_warning(self, client, store):
        store.lines["L1"] = make_line(
            "L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1", pincode="999999"
        )

        response = client.post("/api/orders/download-label", json={"order_id": "O2"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["warning"] is True
        assert body["code"] == "NO_SERVICEABLE_CARRIER"
        assert len(store.notifications) == 1

    def test_bulk_download_partitions(self, client, store, shipway):
        l1 = make_line("L1", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1")
        l2 = make_line("L2", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W2")
        store.lines.update({
            "L1": l1,
            "L2": l2,
            "L3": make_line("L3", "O3", status=ClaimStatus.CLAIMED.value, claimed_by="W1"),
            "L4": make_line("L4", "O4", status=ClaimStatus.CLAIMED.value, claimed_by="W2"),
        })
        shipway.remote_orders["O1"] = remote_order("O1", [l1, l2])

        response = client.post("/api/orders/bulk-download-labels", json={"order_ids": ["O1", "O3", "O4"]})

        data = response.json()["data"]
        assert sorted(r["order_id"] for r in data["successful"]) == ["O1_1", "O3"]
        assert [r["order_id"] for r in data["failed"]] == ["O4"]
        assert data["failed"][0]["code"] == "NOTHING_CLAIMED"

    def test_bulk_mark_ready_isolates_failures(self, client, store, shipway):
        from fulfillment.models import Label

        store.lines["L1"] = make_line(
            "L1", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1", label_downloaded=True
        )
        store.labels["O1"] = Label(order_id="O1", label_url="https://labels.example/O1.pdf", awb="A1", is_manifest=False)
        store.lines["L2"] = make_line("L2", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1")

        response = client.post("/api/orders/bulk-mark-ready", json={"order_ids": ["O1", "O2"]})

        data = response.json()["data"]
        assert data["successful"] == ["O1"]
        assert data["failed"][0]["id"] == "O2"
        assert data["failed"][0]["code"] == "LABEL_NOT_READY"
        assert store.lines["L1"].status == ClaimStatus.READY_FOR_HANDOVER.value

    def test_mark_ready_remote_failure_is_500(self, client, store, shipway):
        store.lines["L1"] = make_line(
            "L1", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1", label_downloaded=True
        )
        shipway.fail_next("create_manifest", ShipwayAPIError("Manifest service unavailable"))

        response = client.post("/api/orders/mark-ready", json={"order_id": "O1"})

        assert response.status_code == 500
        assert response.json()["code"] == "SHIPWAY_API_ERROR"
        assert store.lines["L1"].status == ClaimStatus.CLAIMED.value


class TestAdminRoutes:

    def test_vendor_cannot_call_admin_route(self, client):
        response = client.post("/api/orders/auto-reverse-expired")

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_auto_reverse_expired(self, client):
        as_admin()

        response = client.post("/api/orders/auto-reverse-expired")

        assert response.status_code == 200
        assert response.json()["auto_reversed"] == 2

    def test_assign_priority_carriers(self, client, store):
        as_admin()
        store.lines["L1"] = make_line("L1", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1")

        response = client.post("/api/orders/assign-priority-carriers")

        assert response.json()["data"]["assigned"] == 1
        assert store.lines["L1"].priority_carrier == "2"

    def test_admin_assign_and_unassign(self, client, store):
        as_admin()
        store.lines["L1"] = make_line("L1", "O1")

        assigned = client.post("/api/orders/admin/assign", json={"unique_id": "L1", "warehouse_id": "W5"})
        unassigned = client.post("/api/orders/admin/unassign", json={"unique_id": "L1"})

        assert assigned.json()["data"]["claimed_by"] == "W5"
        assert unassigned.status_code == 200
        assert store.lines["L1"].status == ClaimStatus.UNCLAIMED.value

    def test_auto_reversal_stats(self, client):
        as_admin()

        response = client.get("/api/orders/admin/auto-reversal/stats")

        assert response.json()["data"] == {"total_runs": 1}


class TestAuthentication:

    def test_missing_token_is_401(self, client):
        async def no_db():
            yield AsyncMock()

        app.dependency_overrides.pop(deps.get_current_vendor)
        app.dependency_overrides[get_db] = no_db

        response = client.post("/api/orders/claim", json={"unique_id": "L1"})

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"


class TestServerEntryPoint:

    def test_run_serves_app_on_port(self, monkeypatch):
        import uvicorn
        from fulfillment import main

        served = {}
        monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: served.update(app=app, **kwargs))
        monkeypatch.setenv("PORT", "9100")

        main.run()

        assert served["app"] == "fulfillment.main:app"
        assert served["host"] == "0.0.0.0"
        assert served["port"] == 9100

    def test_run_rejects_bad_port(self, monkeypatch):
        from fulfillment import main

        monkeypatch.setenv("PORT", "http")

        with pytest.raises(SystemExit):
            main.run()
