"""
Carrier model

Courier partners known to the order-management network. Lower priority
values are preferred when several carriers service a pincode.
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Float, Index

from fulfillment.core.database import Base


class CarrierStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Carrier(Base):
    __tablename__ = "carriers"
    __table_args__ = (
        Index("ix_carriers_status_priority", "status", "priority"),
    )

    carrier_id = Column(String(50), primary_key=True)
    carrier_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=CarrierStatus.ACTIVE.value)
    priority = Column(Integer, nullable=False, default=0)
    weight_in_kg = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_active(self) -> bool:
        return (self.status or "").lower() == CarrierStatus.ACTIVE.value

    def __repr__(self):
        return f"<Carrier {self.carrier_id} priority={self.priority} status={self.status}>"
