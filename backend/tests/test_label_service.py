"""
Tests for label download: direct labels, the clone saga and warnings.
"""
import pytest

from fulfillment.core.exceptions import (
    NothingClaimedError,
    NoServiceableCarrierError,
    SagaStepExhaustedError,
    ShipwayAPIError,
)
from fulfillment.models import ClaimStatus, CloneStatus, NotificationType
from fulfillment.services.label_service import LabelService

from fakes import NOW, make_line, remote_order


@pytest.fixture
def service(store, shipway, retry_config, fake_sleep):
    return LabelService(store, shipway, retry_config=retry_config, sleep=fake_sleep, clock=lambda: NOW)


def split_order(store, shipway):
    """O1 with L1 claimed by W1 and L2 claimed by W2, known remotely."""
    l1 = make_line("L1", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W1")
    l2 = make_line("L2", "O1", status=ClaimStatus.CLAIMED.value, claimed_by="W2")
    store.lines.update({"L1": l1, "L2": l2})
    shipway.remote_orders["O1"] = remote_order("O1", [l1, l2])
    return l1, l2


class TestDirectLabel:
    """Vendor owns every line of the order."""

    @pytest.mark.asyncio
    async def test_generates_and_commits_label(self, service, store, shipway):
        store.lines["L1"] = make_line("L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1")
        store.lines["L2"] = make_line("L2", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1")

        result = await service.download_label("O2", "W1")

        assert result.order_id == "O2"
        assert result.label_url == "https://labels.example/O2.pdf"
        assert result.carrier_id == "2"
        assert result.cloned is False
        assert store.labels["O2"].awb == result.awb
        assert all(l.label_downloaded for l in store.lines.values())
        assert all(l.priority_carrier == "2" for l in store.lines.values())

        _, (payload, generate, carrier_id, warehouse_id) = shipway.calls[-1]
        assert generate is True
        assert carrier_id == "2"
        assert warehouse_id == "W1"
        assert len(payload["products"]) == 2

    @pytest.mark.asyncio
    async def test_second_request_is_cached(self, service, store, shipway):
        store.lines["L1"] = make_line("L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1")

        first = await service.download_label("O2", "W1")
        pushes = shipway.count("push_order")
        second = await service.download_label("O2", "W1")

        assert second.cached is True
        assert second.label_url == first.label_url
        assert second.awb == first.awb
        assert shipway.count("push_order") == pushes

    @pytest.mark.asyncio
    async def test_response_without_url_is_not_committed(self, service, store, shipway):
        store.lines["L1"] = make_line("L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1")
        shipway.label_body = lambda order_id, carrier_id: {"success": 1, "AWB": "AWB7777"}

        result = await service.download_label("O2", "W1")

        assert result.label_downloaded is False
        assert result.awb == "AWB7777"
        assert store.lines["L1"].label_downloaded is False
        assert "O2" not in store.labels

    @pytest.mark.asyncio
    async def test_no_serviceable_carrier(self, service, store):
        store.lines["L1"] = make_line(
            "L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1", pincode="999999"
        )

        with pytest.raises(NoServiceableCarrierError):
            await service.download_label("O2", "W1")

    @pytest.mark.asyncio
    async def test_cod_uses_cod_carriers_only(self, service, store, shipway):
        store.lines["L1"] = make_line(
            "L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1", payment_type="C"
        )

        result = await service.download_label("O2", "W1")

        assert result.carrier_id == "1"

    @pytest.mark.asyncio
    async def test_nothing_claimed(self, service, store):
        store.lines["L1"] = make_line("L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W2")

        with pytest.raises(NothingClaimedError):
            await service.download_label("O2", "W1")


class TestCloneSaga:
    """Vendor owns a strict subset of the order."""

    @pytest.mark.asyncio
    async def test_split_moves_claimed_lines_to_clone(self, service, store, shipway):
        split_order(store, shipway)

        result = await service.download_label("O1", "W1")

        assert result.order_id == "O1_1"
        assert result.cloned is True
        assert result.original_order_id == "O1"
        assert result.label_url == "https://labels.example/O1_1.pdf"

        l1, l2 = store.lines["L1"], store.lines["L2"]
        assert (l1.order_id, l1.clone_status, l1.cloned_order_id) == ("O1_1", CloneStatus.CLONED.value, "O1")
        assert l1.label_downloaded is True
        assert l2.order_id == "O1"
        assert l2.clone_status == CloneStatus.NOT_CLONED.value
        assert l2.label_downloaded is False

        # Original now lists only the remaining line, clone only the claimed one
        assert [p["product_code"] for p in shipway.remote_orders["O1"]["products"]] == ["SKU-L2"]
        assert [p["product_code"] for p in shipway.remote_orders["O1_1"]["products"]] == ["SKU-L1"]
        assert shipway.remote_orders["O1_1"]["email"] == "asha@example.com"

    @pytest.mark.asyncio
    async def test_original_id_returns_clone_label_afterwards(self, service, store, shipway):
        split_order(store, shipway)
        first = await service.download_label("O1", "W1")
        calls = len(shipway.calls)

        again = await service.download_label("O1", "W1")

        assert again.cached is True
        assert again.order_id == "O1_1"
        assert again.awb == first.awb
        assert len(shipway.calls) == calls

    @pytest.mark.asyncio
    async def test_original_id_regenerates_clone_label_without_url(self, service, store, shipway):
        split_order(store, shipway)
        shipway.label_body = lambda order_id, carrier_id: {"success": 1, "awb_response": {"AWB": "A1"}}

        first = await service.download_label("O1", "W1")
        assert (first.order_id, first.label_downloaded) == ("O1_1", False)

        shipway.label_body = None
        again = await service.download_label("O1", "W1")

        assert again.order_id == "O1_1"
        assert again.label_downloaded is True
        assert again.cloned is True
        assert again.original_order_id == "O1"
        assert again.label_url == "https://labels.example/O1_1.pdf"
        assert store.labels["O1_1"].awb == again.awb
        assert store.lines["L1"].label_downloaded is True
        # No second split
        assert "O1_2" not in shipway.remote_orders

    @pytest.mark.asyncio
    async def test_original_id_recovers_after_label_step_exhausted(self, service, store, shipway):
        split_order(store, shipway)

        def label_service_down(order_id, carrier_id):
            raise ShipwayAPIError("label service down")

        shipway.label_body = label_service_down

        with pytest.raises(SagaStepExhaustedError) as exc_info:
            await service.download_label("O1", "W1")

        assert exc_info.value.step == "generate_label"
        assert store.lines["L1"].order_id == "O1_1"
        assert store.lines["L1"].label_downloaded is False

        shipway.label_body = None
        result = await service.download_label("O1", "W1")

        assert result.order_id == "O1_1"
        assert result.label_downloaded is True
        assert result.original_order_id == "O1"
        assert store.lines["L1"].label_downloaded is True
        assert store.lines["L2"].order_id == "O1"

    @pytest.mark.asyncio
    async def test_clone_id_skips_taken_suffixes(self, service, store, shipway):
        split_order(store, shipway)
        shipway.remote_orders["O1_1"] = {"order_id": "O1_1"}
        store.lines["X1"] = make_line("X1", "O1_2")

        result = await service.download_label("O1", "W1")

        assert result.order_id == "O1_3"

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, service, store, shipway, sleeps):
        split_order(store, shipway)
        shipway.fail_next("push_order", ShipwayAPIError("gateway timeout"), ShipwayAPIError("gateway timeout"))

        result = await service.download_label("O1", "W1")

        assert result.order_id == "O1_1"
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_step_stops_before_local_changes(self, service, store, shipway, sleeps):
        split_order(store, shipway)
        shipway.fail_next("push_order", *[ShipwayAPIError("down") for _ in range(5)])

        with pytest.raises(SagaStepExhaustedError) as exc_info:
            await service.download_label("O1", "W1")

        assert exc_info.value.step == "create_clone"
        assert sleeps == [1.0, 2.0, 4.0, 8.0]
        assert store.lines["L1"].order_id == "O1"
        assert store.lines["L1"].label_downloaded is False
        assert "O1_1" not in shipway.remote_orders

    @pytest.mark.asyncio
    async def test_unconfirmed_original_update(self, service, store, shipway):
        split_order(store, shipway)
        original_push = shipway.push_order

        async def ignore_original_update(payload, generate_label=False, carrier_id=None, warehouse_id=None):
            if payload["order_id"] == "O1":
                shipway.calls.append(("push_order", (payload,)))
                return {"success": 1}
            return await original_push(payload, generate_label, carrier_id, warehouse_id)

        shipway.push_order = ignore_original_update

        with pytest.raises(SagaStepExhaustedError) as exc_info:
            await service.download_label("O1", "W1")

        assert exc_info.value.step == "verify_original"
        assert exc_info.value.last_error.code == "REMOTE_UNCONFIRMED"
        assert store.lines["L1"].order_id == "O1"


class TestWarnings:
    """HTTP-facing variant never raises."""

    @pytest.mark.asyncio
    async def test_failure_becomes_warning_and_notification(self, service, store, shipway):
        split_order(store, shipway)
        shipway.fail_next("push_order", *[ShipwayAPIError("down") for _ in range(5)])

        body = await service.download_label_or_warning("O1", "W1")

        assert body["success"] is False
        assert body["warning"] is True
        assert body["code"] == "SAGA_STEP_EXHAUSTED"
        assert "contact admin" in body["message"]
        assert store.rollbacks == 1
        assert len(store.notifications) == 1
        assert store.notifications[0].type == NotificationType.ORDER_STUCK.value
        assert store.notifications[0].order_id == "O1"

    @pytest.mark.asyncio
    async def test_missing_url_asks_for_retry(self, service, store, shipway):
        store.lines["L1"] = make_line("L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1")
        shipway.label_body = lambda order_id, carrier_id: {"success": 1, "awb": "AWB1"}

        body = await service.download_label_or_warning("O2", "W1")

        assert body["warning"] is True
        assert body["data"]["label_downloaded"] is False
        assert store.notifications == []

    @pytest.mark.asyncio
    async def test_success_payload(self, service, store):
        store.lines["L1"] = make_line("L1", "O2", status=ClaimStatus.CLAIMED.value, claimed_by="W1")

        body = await service.download_label_or_warning("O2", "W1")

        assert body["success"] is True
        assert body["data"]["label_url"] == "https://labels.example/O2.pdf"
