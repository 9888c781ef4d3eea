"""
Order payloads and money rules

Pure functions shared by direct label generation and the clone saga. Lines
may be OrderLine rows or LineSnapshot copies; only attributes are read.

Collectable amount:
- Prepaid (P): 0
- COD, partially prepaid: order_total_split - prepaid_amount
- COD otherwise: order_total_split
Never negative. Totals are always derived from order_total_split, never from
a previously stored collectable_amount.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence

from fulfillment.core.config import settings
from fulfillment.models import PaymentType

CENT = Decimal("0.01")

# Remote order fields copied verbatim from the original order into clone /
# update payloads
REMOTE_ORDER_FIELDS = (
    "email",
    "phone",
    "billing_address",
    "billing_address2",
    "billing_city",
    "billing_state",
    "billing_country",
    "billing_firstname",
    "billing_lastname",
    "billing_phone",
    "billing_zipcode",
    "shipping_address",
    "shipping_address2",
    "shipping_city",
    "shipping_state",
    "shipping_country",
    "shipping_firstname",
    "shipping_lastname",
    "shipping_phone",
    "shipping_zipcode",
    "order_date",
)


@dataclass(frozen=True)
class LineSnapshot:
    """Immutable copy of the order-line fields a remote payload needs."""
    unique_id: str
    order_id: str
    product_name: Optional[str]
    product_code: Optional[str]
    selling_price: Decimal
    quantity: int
    pincode: Optional[str]
    payment_type: str
    order_total_split: Decimal
    prepaid_amount: Decimal
    is_partial_paid: bool
    status: str
    claimed_by: Optional[str]

    @classmethod
    def of(cls, line) -> "LineSnapshot":
        return cls(
            unique_id=line.unique_id,
            order_id=line.order_id,
            product_name=line.product_name,
            product_code=line.product_code,
            selling_price=to_decimal(line.selling_price),
            quantity=int(line.quantity or 1),
            pincode=line.pincode,
            payment_type=line.payment_type or PaymentType.PREPAID.value,
            order_total_split=to_decimal(line.order_total_split),
            prepaid_amount=to_decimal(line.prepaid_amount),
            is_partial_paid=bool(line.is_partial_paid),
            status=line.status,
            claimed_by=line.claimed_by,
        )


def to_decimal(value) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


def split_total(line) -> Decimal:
    """Line's share of the order; falls back to price x quantity."""
    split = to_decimal(line.order_total_split)
    if split > 0:
        return split
    return to_decimal(line.selling_price) * int(line.quantity or 1)


def collectable_amount(line) -> Decimal:
    if line.payment_type != PaymentType.COD.value:
        return Decimal("0.00")
    amount = split_total(line)
    if line.is_partial_paid:
        amount -= to_decimal(line.prepaid_amount)
    return max(amount, Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP)


def label_total(lines: Sequence) -> Decimal:
    """Amount printed on the label: collectable for COD, split total for prepaid."""
    if not lines:
        return Decimal("0.00")
    if lines[0].payment_type == PaymentType.COD.value:
        total = sum((collectable_amount(line) for line in lines), Decimal("0"))
    else:
        total = sum((split_total(line) for line in lines), Decimal("0"))
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def package_weight_grams(lines: Sequence) -> int:
    return settings.LABEL_WEIGHT_PER_LINE_GRAMS * len(lines)


def product_entries(lines: Iterable) -> List[Dict]:
    return [
        {
            "product": line.product_name or "",
            "price": str(to_decimal(line.selling_price).quantize(CENT)),
            "product_code": line.product_code or "",
            "amount": int(line.quantity or 1),
            "discount": "0",
            "tax_rate": "0",
        }
        for line in lines
    ]


def build_order_payload(
    order_id: str,
    lines: Sequence,
    remote_order: Optional[Dict],
    timestamp: datetime,
) -> Dict:
    """
    Create/update payload for the order-management API.

    Customer and address fields come from the remote copy of the original
    order; products and money come from the lines.
    """
    remote_order = remote_order or {}
    payload = {key: remote_order[key] for key in REMOTE_ORDER_FIELDS if remote_order.get(key) not in (None, "")}
    payment_type = lines[0].payment_type if lines else PaymentType.PREPAID.value

    payload.update({
        "order_id": order_id,
        "products": product_entries(lines),
        "payment_type": payment_type,
        "order_total": str(label_total(lines)),
        "weight": str(package_weight_grams(lines)),
    })
    payload.setdefault("order_date", timestamp.strftime("%Y-%m-%d %H:%M:%S"))
    if lines and lines[0].pincode:
        payload.setdefault("shipping_zipcode", str(lines[0].pincode))
    return payload


def remote_product_codes(remote_order: Optional[Dict]) -> Optional[List[str]]:
    """Product codes listed on a remote order, or None when it lists none."""
    products = (remote_order or {}).get("products")
    if not isinstance(products, list) or not products:
        return None
    codes = [str(p.get("product_code")) for p in products if isinstance(p, dict) and p.get("product_code")]
    return codes or None
