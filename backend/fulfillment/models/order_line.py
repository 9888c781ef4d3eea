"""
Order line model

One product within a shipment order; the unit vendors claim.

Lifecycle:
1. Created by order ingestion (unclaimed)
2. Claimed / unclaimed any number of times
3. Split into a clone order when only part of an order is claimed
4. Marked ready for handover once its label is manifested
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Numeric, Index

from fulfillment.core.database import Base


class ClaimStatus(str, enum.Enum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"
    READY_FOR_HANDOVER = "ready_for_handover"


class CloneStatus(str, enum.Enum):
    NOT_CLONED = "not_cloned"
    CLONED = "cloned"


class PaymentType(str, enum.Enum):
    PREPAID = "P"
    COD = "C"


class OrderLine(Base):
    """
    Line item within an order.

    unique_id never changes. order_id only changes when the clone step moves
    the line into a clone order, together with clone_status/cloned_order_id.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        Index("ix_order_lines_order_id", "order_id"),
        Index("ix_order_lines_claim", "status", "claimed_by"),
        Index("ix_order_lines_stale_claims", "status", "label_downloaded", "claimed_at"),
    )

    unique_id = Column(String(100), primary_key=True)
    order_id = Column(String(100), nullable=False)

    # Product
    product_name = Column(String(500), nullable=True)
    product_code = Column(String(100), nullable=True)
    selling_price = Column(Numeric(10, 2), default=0)
    quantity = Column(Integer, default=1, nullable=False)

    # Customer / delivery
    customer_name = Column(String(255), nullable=True)
    order_date = Column(DateTime(timezone=True), nullable=True)
    pincode = Column(String(10), nullable=True)
    payment_type = Column(String(1), nullable=False, default=PaymentType.PREPAID.value)

    # Money: order_total is the whole customer order, the rest is this line's share
    order_total = Column(Numeric(10, 2), default=0)
    order_total_split = Column(Numeric(10, 2), default=0)
    prepaid_amount = Column(Numeric(10, 2), default=0)
    is_partial_paid = Column(Boolean, default=False, nullable=False)
    collectable_amount = Column(Numeric(10, 2), default=0)

    # Claim state
    status = Column(String(30), nullable=False, default=ClaimStatus.UNCLAIMED.value)
    claimed_by = Column(String(100), nullable=True, index=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    last_claimed_by = Column(String(100), nullable=True)
    last_claimed_at = Column(DateTime(timezone=True), nullable=True)

    # Split state
    clone_status = Column(String(20), nullable=False, default=CloneStatus.NOT_CLONED.value)
    cloned_order_id = Column(String(100), nullable=True)

    # Fulfillment
    label_downloaded = Column(Boolean, default=False, nullable=False)
    priority_carrier = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<OrderLine {self.unique_id} order={self.order_id} status={self.status}>"
