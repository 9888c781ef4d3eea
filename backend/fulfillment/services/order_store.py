"""
Order datastore access

Every read and write the claim lifecycle, label saga and sweeper perform goes
through OrderStore, which wraps one AsyncSession. Statements are built by
module-level functions so their SQL shape can be checked without a database.

Transactions: methods never commit. Callers commit at the boundaries they own
(each local saga step, each claim) via OrderStore.commit().
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, update, and_, exists, func, or_
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.models import (
    OrderLine,
    Label,
    Carrier,
    Notification,
    ClaimStatus,
    CloneStatus,
    NotificationStatus,
    UNUSABLE_LABEL_URLS,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STATEMENT BUILDERS
# =============================================================================

def build_claim_statement(unique_id: str, warehouse_id: str, now: datetime):
    """
    Compare-and-swap claim: only an unclaimed line transitions.

    Affected rows == 1 means this caller won the claim.
    """
    return (
        update(OrderLine)
        .where(
            and_(
                OrderLine.unique_id == unique_id,
                OrderLine.status == ClaimStatus.UNCLAIMED.value,
            )
        )
        .values(
            status=ClaimStatus.CLAIMED.value,
            claimed_by=warehouse_id,
            claimed_at=now,
            last_claimed_by=warehouse_id,
            last_claimed_at=now,
        )
        .execution_options(synchronize_session=False)
    )


def build_sweep_statement(cutoff: datetime):
    """Single-statement reset of stale claims that never produced a label."""
    return (
        update(OrderLine)
        .where(
            and_(
                OrderLine.status == ClaimStatus.CLAIMED.value,
                OrderLine.label_downloaded == False,  # noqa: E712
                OrderLine.claimed_at < cutoff,
            )
        )
        .values(
            status=ClaimStatus.UNCLAIMED.value,
            claimed_by=None,
            claimed_at=None,
        )
        .execution_options(synchronize_session=False)
    )


def build_label_repair_statement():
    """
    Reset label_downloaded on lines whose order has no usable label URL.

    A line flagged downloaded must have a Label row with a real URL for its
    current order_id.
    """
    usable_label = exists().where(
        and_(
            Label.order_id == OrderLine.order_id,
            Label.label_url.isnot(None),
            func.lower(func.trim(Label.label_url)).notin_(UNUSABLE_LABEL_URLS),
        )
    )
    return (
        update(OrderLine)
        .where(
            and_(
                OrderLine.label_downloaded == True,  # noqa: E712
                ~usable_label,
            )
        )
        .values(label_downloaded=False)
        .execution_options(synchronize_session=False)
    )


class OrderStore:
    """Datastore operations over order lines, labels, carriers and notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # ==========================================================================
    # ORDER LINES: READS
    # ==========================================================================

    async def get_line(self, unique_id: str) -> Optional[OrderLine]:
        result = await self.db.execute(
            select(OrderLine)
            .execution_options(populate_existing=True)
            .where(OrderLine.unique_id == unique_id)
        )
        return result.scalar_one_or_none()

    async def get_lines(self, unique_ids: Sequence[str]) -> List[OrderLine]:
        if not unique_ids:
            return []
        result = await self.db.execute(
            select(OrderLine)
            .execution_options(populate_existing=True)
            .where(OrderLine.unique_id.in_(list(unique_ids)))
            .order_by(OrderLine.unique_id)
        )
        return list(result.scalars().all())

    async def get_order_lines(self, order_id: str) -> List[OrderLine]:
        result = await self.db.execute(
            select(OrderLine)
            .execution_options(populate_existing=True)
            .where(OrderLine.order_id == order_id)
            .order_by(OrderLine.unique_id)
        )
        return list(result.scalars().all())

    async def get_vendor_lines(
        self,
        warehouse_id: str,
        statuses: Sequence[str] = (ClaimStatus.CLAIMED.value, ClaimStatus.READY_FOR_HANDOVER.value),
    ) -> List[OrderLine]:
        result = await self.db.execute(
            select(OrderLine)
            .execution_options(populate_existing=True)
            .where(
                and_(
                    OrderLine.claimed_by == warehouse_id,
                    OrderLine.status.in_(list(statuses)),
                )
            )
            .order_by(OrderLine.order_id, OrderLine.unique_id)
        )
        return list(result.scalars().all())

    async def get_claimed_lines(self) -> List[OrderLine]:
        """Every claimed line with an owner; input of bulk carrier assignment."""
        result = await self.db.execute(
            select(OrderLine)
            .execution_options(populate_existing=True)
            .where(
                and_(
                    OrderLine.status == ClaimStatus.CLAIMED.value,
                    OrderLine.claimed_by.isnot(None),
                )
            )
            .order_by(OrderLine.unique_id)
        )
        return list(result.scalars().all())

    async def get_cloned_lines(self, original_order_id: str, warehouse_id: str) -> List[OrderLine]:
        """Lines this vendor split out of original_order_id."""
        result = await self.db.execute(
            select(OrderLine)
            .execution_options(populate_existing=True)
            .where(
                and_(
                    OrderLine.cloned_order_id == original_order_id,
                    OrderLine.claimed_by == warehouse_id,
                )
            )
            .order_by(OrderLine.unique_id)
        )
        return list(result.scalars().all())

    async def order_id_exists(self, order_id: str) -> bool:
        result = await self.db.execute(
            select(func.count()).select_from(OrderLine).where(OrderLine.order_id == order_id)
        )
        return (result.scalar() or 0) > 0

    # ==========================================================================
    # ORDER LINES: WRITES
    # ==========================================================================

    async def claim_line(self, unique_id: str, warehouse_id: str, now: datetime) -> bool:
        """Atomic claim. Returns False when the line was not unclaimed."""
        result = await self.db.execute(build_claim_statement(unique_id, warehouse_id, now))
        return result.rowcount == 1

    async def release_lines(self, unique_ids: Sequence[str]) -> int:
        """Reset claim fields; last_claimed_* history is kept."""
        if not unique_ids:
            return 0
        result = await self.db.execute(
            update(OrderLine)
            .where(OrderLine.unique_id.in_(list(unique_ids)))
            .values(
                status=ClaimStatus.UNCLAIMED.value,
                claimed_by=None,
                claimed_at=None,
                label_downloaded=False,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def set_label_downloaded(self, unique_ids: Sequence[str], downloaded: bool) -> int:
        if not unique_ids:
            return 0
        result = await self.db.execute(
            update(OrderLine)
            .where(OrderLine.unique_id.in_(list(unique_ids)))
            .values(label_downloaded=downloaded)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def reset_order_label_flags(self, order_id: str) -> int:
        result = await self.db.execute(
            update(OrderLine)
            .where(OrderLine.order_id == order_id)
            .values(label_downloaded=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def mark_lines_ready(self, unique_ids: Sequence[str]) -> int:
        if not unique_ids:
            return 0
        result = await self.db.execute(
            update(OrderLine)
            .where(OrderLine.unique_id.in_(list(unique_ids)))
            .values(status=ClaimStatus.READY_FOR_HANDOVER.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def unmark_ready(self, order_id: str) -> int:
        """Send ready_for_handover lines of an order back to claimed."""
        result = await self.db.execute(
            update(OrderLine)
            .where(
                and_(
                    OrderLine.order_id == order_id,
                    OrderLine.status == ClaimStatus.READY_FOR_HANDOVER.value,
                )
            )
            .values(status=ClaimStatus.CLAIMED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def move_lines_to_clone(
        self,
        unique_ids: Sequence[str],
        clone_order_id: str,
        original_order_id: str,
    ) -> int:
        """order_id, clone_status and cloned_order_id change together."""
        if not unique_ids:
            return 0
        result = await self.db.execute(
            update(OrderLine)
            .where(OrderLine.unique_id.in_(list(unique_ids)))
            .values(
                order_id=clone_order_id,
                clone_status=CloneStatus.CLONED.value,
                cloned_order_id=original_order_id,
                label_downloaded=False,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def set_priority_carrier(self, unique_ids: Sequence[str], carrier_id: Optional[str]) -> int:
        if not unique_ids:
            return 0
        result = await self.db.execute(
            update(OrderLine)
            .where(OrderLine.unique_id.in_(list(unique_ids)))
            .values(priority_carrier=carrier_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def sweep_stale_claims(self, cutoff: datetime) -> int:
        result = await self.db.execute(build_sweep_statement(cutoff))
        return result.rowcount

    async def repair_label_flags(self) -> int:
        result = await self.db.execute(build_label_repair_statement())
        return result.rowcount

    # ==========================================================================
    # LABELS
    # ==========================================================================

    async def get_label(self, order_id: str) -> Optional[Label]:
        result = await self.db.execute(
            select(Label)
            .execution_options(populate_existing=True)
            .where(Label.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def get_labels(self, order_ids: Sequence[str]) -> Dict[str, Label]:
        if not order_ids:
            return {}
        result = await self.db.execute(
            select(Label)
            .execution_options(populate_existing=True)
            .where(Label.order_id.in_(list(order_ids)))
        )
        return {label.order_id: label for label in result.scalars().all()}

    async def upsert_label(
        self,
        order_id: str,
        label_url: str,
        awb: Optional[str],
        carrier_id: Optional[str],
        carrier_name: Optional[str],
    ) -> None:
        values = {
            "label_url": label_url,
            "awb": awb,
            "carrier_id": carrier_id,
            "carrier_name": carrier_name,
        }
        stmt = insert(Label).values(order_id=order_id, **values).on_conflict_do_update(
            index_elements=["order_id"],
            set_=values,
        )
        await self.db.execute(stmt)

    async def clear_label(self, order_id: str) -> int:
        result = await self.db.execute(
            update(Label)
            .where(Label.order_id == order_id)
            .values(label_url=None, awb=None, carrier_id=None, carrier_name=None, is_manifest=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def mark_manifested(self, order_id: str, now: datetime) -> int:
        result = await self.db.execute(
            update(Label)
            .where(Label.order_id == order_id)
            .values(is_manifest=True, handover_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ==========================================================================
    # CARRIERS
    # ==========================================================================

    async def list_carriers(self) -> List[Carrier]:
        result = await self.db.execute(
            select(Carrier).order_by(Carrier.priority, Carrier.carrier_id)
        )
        return list(result.scalars().all())

    async def add_carrier(self, carrier: Carrier) -> None:
        self.db.add(carrier)

    # ==========================================================================
    # NOTIFICATIONS
    # ==========================================================================

    async def add_notification(self, notification: Notification) -> None:
        self.db.add(notification)

    async def has_pending_notification(self, order_id: Optional[str], notification_type: str) -> bool:
        """Duplicate suppression: one open alert per order and type."""
        if not order_id:
            return False
        result = await self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                and_(
                    Notification.order_id == order_id,
                    Notification.type == notification_type,
                    or_(
                        Notification.status == NotificationStatus.PENDING.value,
                        Notification.status.is_(None),
                    ),
                )
            )
        )
        return (result.scalar() or 0) > 0
