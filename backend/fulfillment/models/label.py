"""
Label model

At most one row per order_id (the post-split id, one per physical parcel).
label_url is only written after a confirmed label-creation response.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text

from fulfillment.core.database import Base

# Values some upstream writers stored instead of NULL
UNUSABLE_LABEL_URLS = ("", "null", "undefined")


class Label(Base):
    __tablename__ = "labels"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(100), unique=True, nullable=False, index=True)
    label_url = Column(Text, nullable=True)
    awb = Column(String(100), nullable=True)
    carrier_id = Column(String(50), nullable=True)
    carrier_name = Column(String(255), nullable=True)
    handover_at = Column(DateTime(timezone=True), nullable=True)
    is_manifest = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def has_usable_url(self) -> bool:
        return bool(self.label_url) and self.label_url.strip().lower() not in UNUSABLE_LABEL_URLS

    def __repr__(self):
        return f"<Label {self.order_id} awb={self.awb}>"
