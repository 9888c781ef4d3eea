"""
Admin order routes

Manual sweeper trigger, priority carrier assignment, carrier sync and
assignment of lines on behalf of vendors.
"""
import logging

from fastapi import APIRouter, Depends, Request

from fulfillment.api.deps import (
    get_claim_service,
    get_current_admin,
    get_shipway,
    get_store,
    get_sweeper,
)
from fulfillment.core.config import settings
from fulfillment.core.rate_limit import limiter
from fulfillment.models import Vendor
from fulfillment.schemas.claims import (
    AdminAssignRequest,
    AdminBulkAssignRequest,
    AdminUnassignRequest,
    OrderLineResponse,
)
from fulfillment.services.auto_reversal import AutoReversalSweeper
from fulfillment.services.carrier_directory import sync_carriers
from fulfillment.services.claim_service import ClaimService
from fulfillment.services.order_store import OrderStore
from fulfillment.services.serviceability import assign_priority_carriers
from fulfillment.services.shipway_client import ShipwayClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin - Orders"])


@router.post("/auto-reverse-expired")
async def auto_reverse_expired(
    admin: Vendor = Depends(get_current_admin),
    sweeper: AutoReversalSweeper = Depends(get_sweeper),
):
    """Run the stale-claim sweep now. Skipped if a sweep is already running."""
    logger.info(f"Manual auto-reversal triggered by {admin.warehouse_id}")
    return await sweeper.run()


@router.get("/admin/auto-reversal/stats")
async def auto_reversal_stats(
    admin: Vendor = Depends(get_current_admin),
    sweeper: AutoReversalSweeper = Depends(get_sweeper),
):
    return {"success": True, "data": sweeper.get_stats()}


@router.post("/assign-priority-carriers")
@limiter.limit(settings.RATE_LIMIT_BULK)
async def assign_carriers(
    request: Request,
    admin: Vendor = Depends(get_current_admin),
    store: OrderStore = Depends(get_store),
    shipway: ShipwayClient = Depends(get_shipway),
):
    """Resolve and store the priority carrier of every claimed line."""
    summary = await assign_priority_carriers(store, shipway)
    return {"success": True, "data": summary}


@router.post("/admin/carriers/sync")
async def sync_carrier_directory(
    admin: Vendor = Depends(get_current_admin),
    store: OrderStore = Depends(get_store),
    shipway: ShipwayClient = Depends(get_shipway),
):
    stats = await sync_carriers(store, shipway)
    return {"success": True, "data": stats}


# ==================== Assignment ====================


@router.post("/admin/assign")
async def admin_assign(
    body: AdminAssignRequest,
    admin: Vendor = Depends(get_current_admin),
    service: ClaimService = Depends(get_claim_service),
):
    line = await service.admin_assign(body.unique_id, body.warehouse_id)
    return {
        "success": True,
        "message": f"Order line assigned to {body.warehouse_id}",
        "data": OrderLineResponse.model_validate(line).model_dump(mode="json"),
    }


@router.post("/admin/bulk-assign")
async def admin_bulk_assign(
    body: AdminBulkAssignRequest,
    admin: Vendor = Depends(get_current_admin),
    service: ClaimService = Depends(get_claim_service),
):
    result = await service.admin_bulk_assign(body.unique_ids, body.warehouse_id)
    return {"success": True, "data": result.to_dict()}


@router.post("/admin/unassign")
async def admin_unassign(
    body: AdminUnassignRequest,
    admin: Vendor = Depends(get_current_admin),
    service: ClaimService = Depends(get_claim_service),
):
    result = await service.admin_unassign(body.unique_id)
    return {
        "success": True,
        "message": "Order line unassigned",
        "data": {
            "order_id": result.order_id,
            "unique_ids": result.unique_ids,
            "shipment_cancelled": result.shipment_cancelled,
        },
    }
