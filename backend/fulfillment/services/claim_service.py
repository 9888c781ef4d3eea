"""
Claim State Machine

    unclaimed -> claimed -> ready_for_handover
    claimed / ready_for_handover -> unclaimed   (reverse, unassign, sweeper)

Claim is a compare-and-swap on status; two concurrent claimants can never
both win. Reversal of a line whose label was downloaded cancels the remote
shipment first and touches nothing locally if cancellation fails. Mark-ready
creates the remote manifest before any local change.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from fulfillment.core.exceptions import (
    FulfillmentError,
    ForbiddenError,
    InvalidStateError,
    LabelNotReadyError,
    NotFoundError,
    NothingClaimedError,
)
from fulfillment.core.utils import utcnow
from fulfillment.models import OrderLine, ClaimStatus
from fulfillment.services.order_store import OrderStore
from fulfillment.services.shipway_client import ShipwayClient

logger = logging.getLogger(__name__)

OWNED_STATUSES = (ClaimStatus.CLAIMED.value, ClaimStatus.READY_FOR_HANDOVER.value)


@dataclass
class BulkResult:
    """Per-item partition of a bulk operation."""
    successful: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    def add_failure(self, item_id: str, error: Exception) -> None:
        self.failed.append({
            "id": item_id,
            "code": getattr(error, "code", "INTERNAL_ERROR"),
            "reason": getattr(error, "message", None) or str(error),
        })

    def to_dict(self) -> Dict:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "total_successful": len(self.successful),
            "total_failed": len(self.failed),
        }


@dataclass
class ReversalResult:
    order_id: str
    unique_ids: List[str]
    shipment_cancelled: bool
    awb: Optional[str] = None


class ClaimService:

    def __init__(
        self,
        store: OrderStore,
        shipway: ShipwayClient,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.shipway = shipway
        self.clock = clock

    # ==========================================================================
    # CLAIM
    # ==========================================================================

    async def claim(self, unique_id: str, warehouse_id: str) -> OrderLine:
        """Claim one line for a vendor (or for an admin-chosen vendor)."""
        line = await self.store.get_line(unique_id)
        if line is None:
            raise NotFoundError(f"Order line {unique_id} not found", details={"unique_id": unique_id})

        won = await self.store.claim_line(unique_id, warehouse_id, self.clock())
        if not won:
            current = await self.store.get_line(unique_id)
            current_status = current.status if current else None
            raise InvalidStateError(
                f"Order line {unique_id} is not available for claiming (status: {current_status})",
                unique_id=unique_id,
                current_status=current_status,
            )

        await self.store.commit()
        logger.info(f"Order line {unique_id} (order {line.order_id}) claimed by {warehouse_id}")
        return await self.store.get_line(unique_id)

    async def bulk_claim(self, unique_ids: Sequence[str], warehouse_id: str) -> BulkResult:
        """Independent claims; partial success is normal."""
        result = BulkResult()
        for unique_id in dict.fromkeys(unique_ids):
            try:
                await self.claim(unique_id, warehouse_id)
                result.successful.append(unique_id)
            except FulfillmentError as e:
                result.add_failure(unique_id, e)

        logger.info(
            f"Bulk claim by {warehouse_id}: {len(result.successful)} succeeded, "
            f"{len(result.failed)} failed"
        )
        return result

    # ==========================================================================
    # MARK READY
    # ==========================================================================

    async def mark_ready(self, order_id: str, warehouse_id: str) -> Dict:
        lines = await self.store.get_order_lines(order_id)
        if not lines:
            raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})

        owned = [l for l in lines if l.claimed_by == warehouse_id and l.status in OWNED_STATUSES]
        if not owned:
            raise NothingClaimedError(
                f"No lines of order {order_id} are claimed by you",
                details={"order_id": order_id},
            )

        pending = [l.unique_id for l in owned if not l.label_downloaded]
        if pending:
            raise LabelNotReadyError(
                f"Download the label for order {order_id} before marking it ready",
                order_id=order_id,
                pending_unique_ids=pending,
            )

        # Remote manifest must exist before local state says "ready"
        await self.shipway.create_manifest([order_id])

        await self.store.mark_manifested(order_id, self.clock())
        await self.store.mark_lines_ready([l.unique_id for l in owned])
        await self.store.commit()

        logger.info(f"Order {order_id} manifested and ready for handover ({len(owned)} line(s), {warehouse_id})")
        return {"order_id": order_id, "unique_ids": [l.unique_id for l in owned]}

    # ==========================================================================
    # REVERSE / UNASSIGN
    # ==========================================================================

    async def reverse(self, unique_id: str, warehouse_id: Optional[str]) -> ReversalResult:
        """
        Give one line back to the pool.

        warehouse_id=None is the administrative unassign: no ownership check.
        """
        line = await self.store.get_line(unique_id)
        if line is None:
            raise NotFoundError(f"Order line {unique_id} not found", details={"unique_id": unique_id})
        self._check_reversible(line, warehouse_id)
        return await self._release(line.order_id, [line])

    async def reverse_grouped(
        self,
        order_id: str,
        unique_ids: Sequence[str],
        warehouse_id: Optional[str],
    ) -> ReversalResult:
        """Reverse several lines of one order with at most one remote cancellation."""
        unique_ids = list(dict.fromkeys(unique_ids))
        if not unique_ids:
            raise InvalidStateError("No order lines given to reverse", details={"order_id": order_id})

        lines = await self.store.get_lines(unique_ids)
        found = {l.unique_id for l in lines}
        missing = [u for u in unique_ids if u not in found]
        if missing:
            raise NotFoundError(
                f"Order line(s) not found: {', '.join(missing)}",
                details={"unique_ids": missing},
            )

        foreign = [l.unique_id for l in lines if l.order_id != order_id]
        if foreign:
            raise InvalidStateError(
                f"Order line(s) {', '.join(foreign)} do not belong to order {order_id}",
                details={"order_id": order_id, "unique_ids": foreign},
            )

        for line in lines:
            self._check_reversible(line, warehouse_id)

        return await self._release(order_id, lines)

    def _check_reversible(self, line: OrderLine, warehouse_id: Optional[str]) -> None:
        if warehouse_id is not None and line.claimed_by != warehouse_id:
            raise ForbiddenError(
                f"Order line {line.unique_id} is not claimed by you",
                details={"unique_id": line.unique_id},
            )
        if line.status not in OWNED_STATUSES:
            raise InvalidStateError(
                f"Order line {line.unique_id} is not claimed",
                unique_id=line.unique_id,
                current_status=line.status,
            )

    async def _release(self, order_id: str, lines: List[OrderLine]) -> ReversalResult:
        unique_ids = [l.unique_id for l in lines]
        awb = None
        cancelled = False

        if any(l.label_downloaded for l in lines):
            label = await self.store.get_label(order_id)
            awb = label.awb if label else None
            if awb:
                # Raises on failure; nothing local has changed yet
                await self.shipway.cancel_shipment([awb])
                cancelled = True
                logger.info(f"Cancelled shipment {awb} for order {order_id}")
            else:
                logger.warning(f"Order {order_id} has a downloaded label but no AWB; nothing to cancel remotely")

            # The label is void for every line shipped under it
            await self.store.clear_label(order_id)
            await self.store.reset_order_label_flags(order_id)
            # Siblings left without shipment or manifest go back to claimed
            reverted = await self.store.unmark_ready(order_id)
            if reverted:
                logger.info(f"Order {order_id}: {reverted} line(s) moved back from ready_for_handover to claimed")

        await self.store.release_lines(unique_ids)
        await self.store.commit()

        logger.info(f"Reversed {len(unique_ids)} line(s) of order {order_id}: {unique_ids}")
        return ReversalResult(order_id=order_id, unique_ids=unique_ids, shipment_cancelled=cancelled, awb=awb)

    # ==========================================================================
    # ADMIN
    # ==========================================================================

    async def admin_assign(self, unique_id: str, warehouse_id: str) -> OrderLine:
        logger.info(f"Admin assigning order line {unique_id} to {warehouse_id}")
        return await self.claim(unique_id, warehouse_id)

    async def admin_bulk_assign(self, unique_ids: Sequence[str], warehouse_id: str) -> BulkResult:
        return await self.bulk_claim(unique_ids, warehouse_id)

    async def admin_unassign(self, unique_id: str) -> ReversalResult:
        logger.info(f"Admin unassigning order line {unique_id}")
        return await self.reverse(unique_id, None)

    # ==========================================================================
    # VIEWS
    # ==========================================================================

    async def grouped_orders(self, warehouse_id: str) -> List[Dict]:
        """The vendor's lines grouped by current order_id, with label state."""
        lines = await self.store.get_vendor_lines(warehouse_id)
        groups: "OrderedDict[str, List[OrderLine]]" = OrderedDict()
        for line in lines:
            groups.setdefault(line.order_id, []).append(line)

        labels = await self.store.get_labels(list(groups.keys()))
        grouped = []
        for order_id, order_lines in groups.items():
            label = labels.get(order_id)
            grouped.append({
                "order_id": order_id,
                "original_order_id": order_lines[0].cloned_order_id,
                "customer_name": order_lines[0].customer_name,
                "pincode": order_lines[0].pincode,
                "payment_type": order_lines[0].payment_type,
                "status": (
                    ClaimStatus.READY_FOR_HANDOVER.value
                    if all(l.status == ClaimStatus.READY_FOR_HANDOVER.value for l in order_lines)
                    else ClaimStatus.CLAIMED.value
                ),
                "label_downloaded": all(l.label_downloaded for l in order_lines),
                "label_url": label.label_url if label and label.has_usable_url else None,
                "awb": label.awb if label else None,
                "carrier_name": label.carrier_name if label else None,
                "is_manifest": bool(label.is_manifest) if label else False,
                "lines": [
                    {
                        "unique_id": l.unique_id,
                        "product_name": l.product_name,
                        "product_code": l.product_code,
                        "quantity": l.quantity,
                        "status": l.status,
                        "label_downloaded": bool(l.label_downloaded),
                        "claimed_at": l.claimed_at.isoformat() if l.claimed_at else None,
                    }
                    for l in order_lines
                ],
            })
        return grouped
