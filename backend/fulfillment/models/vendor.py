"""
Vendor model

A warehouse operator (or admin) authenticated by a bearer token.
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime

from fulfillment.core.database import Base


class VendorRole(str, enum.Enum):
    VENDOR = "vendor"
    ADMIN = "admin"


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    warehouse_id = Column(String(100), nullable=False, unique=True)
    role = Column(String(20), nullable=False, default=VendorRole.VENDOR.value)
    token = Column(String(255), nullable=True, unique=True, index=True)
    active_session = Column(Boolean, default=False, nullable=False)
    contact_number = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def is_admin(self) -> bool:
        return self.role == VendorRole.ADMIN.value

    def __repr__(self):
        return f"<Vendor {self.warehouse_id} role={self.role}>"
