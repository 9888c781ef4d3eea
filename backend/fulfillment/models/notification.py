"""
Notification model

Structured alerts raised when label generation fails upstream.
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON

from fulfillment.core.database import Base


class NotificationType(str, enum.Enum):
    REVERSE_ORDER_FAILURE = "reverse_order_failure"
    SHIPMENT_ASSIGNMENT_ERROR = "shipment_assignment_error"
    CARRIER_UNAVAILABLE = "carrier_unavailable"
    LOW_BALANCE = "low_balance"
    WAREHOUSE_ISSUE = "warehouse_issue"
    PAYMENT_FAILED = "payment_failed"
    ORDER_STUCK = "order_stuck"
    OTHER = "other"


class NotificationSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(50), nullable=False, index=True)
    severity = Column(String(20), nullable=False, default=NotificationSeverity.MEDIUM.value)
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    order_id = Column(String(100), nullable=True, index=True)
    vendor_warehouse_id = Column(String(100), nullable=True)
    error_details = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<Notification {self.type}/{self.severity} order={self.order_id}>"
