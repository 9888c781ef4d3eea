"""
Tests for order payloads and money rules.
"""
from decimal import Decimal

from fulfillment.services.order_payload import (
    LineSnapshot,
    build_order_payload,
    collectable_amount,
    label_total,
    remote_product_codes,
)

from fakes import NOW, make_line


class TestCollectableAmount:

    def test_prepaid_collects_nothing(self):
        line = make_line("L1", "O1", payment_type="P", order_total_split="750.00")

        assert collectable_amount(line) == Decimal("0.00")

    def test_cod_collects_split_total(self):
        line = make_line("L1", "O1", payment_type="C", order_total_split="750.00", collectable_amount="999")

        assert collectable_amount(line) == Decimal("750.00")

    def test_partial_prepaid_deducts_prepaid(self):
        line = make_line(
            "L1", "O1", payment_type="C", order_total_split="750.00",
            prepaid_amount="200.00", is_partial_paid=True,
        )

        assert collectable_amount(line) == Decimal("550.00")

    def test_never_negative(self):
        line = make_line(
            "L1", "O1", payment_type="C", order_total_split="100.00",
            prepaid_amount="250.00", is_partial_paid=True,
        )

        assert collectable_amount(line) == Decimal("0.00")

    def test_split_falls_back_to_price_times_quantity(self):
        line = make_line("L1", "O1", payment_type="C", order_total_split="0", selling_price="120.50", quantity=2)

        assert collectable_amount(line) == Decimal("241.00")


class TestPayload:

    def test_label_total_by_payment_type(self):
        cod = [make_line("L1", "O1", payment_type="C", order_total_split="300"),
               make_line("L2", "O1", payment_type="C", order_total_split="200")]
        prepaid = [make_line("L3", "O2", order_total_split="300")]

        assert label_total(cod) == Decimal("500.00")
        assert label_total(prepaid) == Decimal("300.00")

    def test_build_order_payload_copies_customer_fields(self):
        lines = [LineSnapshot.of(make_line("L1", "O1_1")), LineSnapshot.of(make_line("L2", "O1_1"))]
        remote = {
            "order_id": "O1",
            "email": "asha@example.com",
            "shipping_city": "Bengaluru",
            "billing_phone": "",
            "products": [{"product_code": "OTHER"}],
        }

        payload = build_order_payload("O1_1", lines, remote, NOW)

        assert payload["order_id"] == "O1_1"
        assert payload["email"] == "asha@example.com"
        assert payload["shipping_city"] == "Bengaluru"
        assert "billing_phone" not in payload
        assert [p["product_code"] for p in payload["products"]] == ["SKU-L1", "SKU-L2"]
        assert payload["order_total"] == "1000.00"
        assert payload["weight"] == "700"
        assert payload["payment_type"] == "P"
        assert payload["order_date"] == "2024-06-01 12:00:00"
        assert payload["shipping_zipcode"] == "560001"

    def test_snapshot_is_independent_of_row(self):
        line = make_line("L1", "O1")
        snapshot = LineSnapshot.of(line)

        line.order_id = "O1_1"
        line.product_code = "CHANGED"

        assert snapshot.order_id == "O1"
        assert snapshot.product_code == "SKU-L1"

    def test_remote_product_codes(self):
        assert remote_product_codes({"products": [{"product_code": "A"}, {"product_code": "B"}]}) == ["A", "B"]
        assert remote_product_codes({"products": []}) is None
        assert remote_product_codes(None) is None
