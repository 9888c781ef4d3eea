from fulfillment.models.order_line import OrderLine, ClaimStatus, CloneStatus, PaymentType
from fulfillment.models.label import Label, UNUSABLE_LABEL_URLS
from fulfillment.models.carrier import Carrier, CarrierStatus
from fulfillment.models.vendor import Vendor, VendorRole
from fulfillment.models.notification import (
    Notification,
    NotificationType,
    NotificationSeverity,
    NotificationStatus,
)

__all__ = [
    "OrderLine",
    "ClaimStatus",
    "CloneStatus",
    "PaymentType",
    "Label",
    "UNUSABLE_LABEL_URLS",
    "Carrier",
    "CarrierStatus",
    "Vendor",
    "VendorRole",
    "Notification",
    "NotificationType",
    "NotificationSeverity",
    "NotificationStatus",
]
