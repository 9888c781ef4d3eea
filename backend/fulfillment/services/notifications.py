"""
Notification Emitter

Turns label-generation failures into structured alerts for admins.

Classification order:
1. Typed error codes (FulfillmentError.code)
2. Legacy text patterns for remote messages without a usable code

Emitting is best effort: any failure is logged and swallowed so the caller's
response path is never blocked.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from fulfillment.core.exceptions import FulfillmentError
from fulfillment.models import Notification, NotificationType, NotificationSeverity
from fulfillment.services.order_store import OrderStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    type: NotificationType
    severity: NotificationSeverity
    title: str


CODE_CLASSIFICATIONS = {
    "NO_SERVICEABLE_CARRIER": Classification(
        NotificationType.CARRIER_UNAVAILABLE, NotificationSeverity.HIGH, "No serviceable carrier"
    ),
    "MALFORMED_CARRIER_RESPONSE": Classification(
        NotificationType.SHIPMENT_ASSIGNMENT_ERROR, NotificationSeverity.HIGH, "Unreadable label response"
    ),
    "REMOTE_UNCONFIRMED": Classification(
        NotificationType.ORDER_STUCK, NotificationSeverity.HIGH, "Order split not confirmed"
    ),
    "SAGA_STEP_EXHAUSTED": Classification(
        NotificationType.ORDER_STUCK, NotificationSeverity.HIGH, "Order split failed"
    ),
}

# (substrings, classification); first match wins
PATTERN_CLASSIFICATIONS = [
    (
        ("insufficient balance", "low balance", "recharge"),
        Classification(NotificationType.LOW_BALANCE, NotificationSeverity.CRITICAL, "Low wallet balance"),
    ),
    (
        ("not serviceable", "serviceable", "pincode"),
        Classification(NotificationType.CARRIER_UNAVAILABLE, NotificationSeverity.HIGH, "Pincode not serviceable"),
    ),
    (
        ("duplicate", "already exists"),
        Classification(NotificationType.SHIPMENT_ASSIGNMENT_ERROR, NotificationSeverity.MEDIUM, "Duplicate order"),
    ),
]

DEFAULT_CLASSIFICATION = Classification(
    NotificationType.SHIPMENT_ASSIGNMENT_ERROR, NotificationSeverity.MEDIUM, "Label generation failed"
)


def _root_error(error: Union[str, BaseException]) -> Union[str, BaseException]:
    # Exhausted saga steps wrap the error that actually happened
    last = getattr(error, "last_error", None)
    return last if last is not None else error


def classify(error: Union[str, BaseException]) -> Classification:
    root = _root_error(error)

    if isinstance(root, FulfillmentError) and root.code in CODE_CLASSIFICATIONS:
        return CODE_CLASSIFICATIONS[root.code]

    text = str(getattr(root, "message", root)).lower()
    for patterns, classification in PATTERN_CLASSIFICATIONS:
        if any(p in text for p in patterns):
            return classification

    if isinstance(error, FulfillmentError) and error.code in CODE_CLASSIFICATIONS:
        return CODE_CLASSIFICATIONS[error.code]
    return DEFAULT_CLASSIFICATION


class NotificationEmitter:

    def __init__(self, store: OrderStore):
        self.store = store

    async def emit(
        self,
        error: Union[str, BaseException],
        order_id: Optional[str] = None,
        warehouse_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """Create an alert for a label failure. Never raises."""
        try:
            classification = classify(error)
            message = getattr(error, "message", None) or str(error)

            if await self.store.has_pending_notification(order_id, classification.type.value):
                logger.info(f"Notification for order {order_id} ({classification.type.value}) already pending")
                return None

            notification = Notification(
                type=classification.type.value,
                severity=classification.severity.value,
                title=classification.title,
                message=f"Order {order_id}: {message}" if order_id else message,
                order_id=order_id,
                vendor_warehouse_id=warehouse_id,
                error_details=repr(error) if isinstance(error, BaseException) else None,
                metadata_json=getattr(error, "details", None) or {},
            )
            await self.store.add_notification(notification)
            await self.store.commit()
            logger.info(
                f"Notification raised: {classification.type.value}/{classification.severity.value} "
                f"order={order_id} vendor={warehouse_id}"
            )
            return notification
        except Exception as e:
            logger.error(f"Failed to create notification for order {order_id}: {e}", exc_info=True)
            return None
