"""
Vendor order routes

Claim, label download, mark-ready and reversal of order lines for the
authenticated vendor. Bulk routes isolate failures per item and report a
successful/failed partition.
"""
import logging

from fastapi import APIRouter, Depends, Request

from fulfillment.api.deps import (
    StoreFactory,
    get_claim_service,
    get_current_vendor,
    get_label_service,
    get_shipway,
    get_store_factory,
)
from fulfillment.core.config import settings
from fulfillment.core.rate_limit import limiter
from fulfillment.models import Vendor
from fulfillment.schemas.claims import (
    BulkClaimRequest,
    BulkOrdersRequest,
    ClaimRequest,
    OrderLineResponse,
    OrderRequest,
    ReverseGroupedRequest,
    ReverseRequest,
)
from fulfillment.services.batching import process_in_batches
from fulfillment.services.claim_service import BulkResult, ClaimService
from fulfillment.services.label_service import LabelService
from fulfillment.services.shipway_client import ShipwayClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Orders"])


# ==================== Claims ====================


@router.post("/claim")
async def claim_order_line(
    body: ClaimRequest,
    vendor: Vendor = Depends(get_current_vendor),
    service: ClaimService = Depends(get_claim_service),
):
    line = await service.claim(body.unique_id, vendor.warehouse_id)
    return {
        "success": True,
        "message": "Order line claimed",
        "data": OrderLineResponse.model_validate(line).model_dump(mode="json"),
    }


@router.post("/bulk-claim")
async def bulk_claim_order_lines(
    body: BulkClaimRequest,
    vendor: Vendor = Depends(get_current_vendor),
    service: ClaimService = Depends(get_claim_service),
):
    result = await service.bulk_claim(body.unique_ids, vendor.warehouse_id)
    return {"success": True, "data": result.to_dict()}


@router.get("/grouped")
async def get_grouped_orders(
    vendor: Vendor = Depends(get_current_vendor),
    service: ClaimService = Depends(get_claim_service),
):
    """The vendor's claimed and ready lines grouped by order."""
    groups = await service.grouped_orders(vendor.warehouse_id)
    return {"success": True, "data": groups, "total": len(groups)}


# ==================== Labels ====================


@router.post("/download-label")
async def download_label(
    body: OrderRequest,
    vendor: Vendor = Depends(get_current_vendor),
    service: LabelService = Depends(get_label_service),
):
    """
    Label for the vendor's lines of an order, splitting the order first when
    other vendors hold the rest. Failures come back as a warning (HTTP 200).
    """
    return await service.download_label_or_warning(body.order_id, vendor.warehouse_id)


@router.post("/bulk-download-labels")
@limiter.limit(settings.RATE_LIMIT_BULK)
async def bulk_download_labels(
    request: Request,
    body: BulkOrdersRequest,
    vendor: Vendor = Depends(get_current_vendor),
    shipway: ShipwayClient = Depends(get_shipway),
    open_store: StoreFactory = Depends(get_store_factory),
):
    async def download_one(order_id: str) -> dict:
        async with open_store() as store:
            return await LabelService(store, shipway).download_label_or_warning(order_id, vendor.warehouse_id)

    outcomes = await process_in_batches(
        body.order_ids, download_one, settings.LABEL_BATCH_SIZE, label="bulk-download-labels"
    )

    successful, failed = [], []
    for order_id, outcome in outcomes:
        if isinstance(outcome, Exception):
            logger.error(f"Bulk label download crashed for order {order_id}: {outcome!r}")
            failed.append({"order_id": order_id, "code": "INTERNAL_ERROR", "message": "Label could not be generated"})
        elif outcome.get("success"):
            successful.append(outcome)
        else:
            failed.append(outcome)

    return {
        "success": True,
        "data": {
            "successful": successful,
            "failed": failed,
            "total_successful": len(successful),
            "total_failed": len(failed),
        },
    }


# ==================== Handover ====================


@router.post("/mark-ready")
async def mark_ready(
    body: OrderRequest,
    vendor: Vendor = Depends(get_current_vendor),
    service: ClaimService = Depends(get_claim_service),
):
    data = await service.mark_ready(body.order_id, vendor.warehouse_id)
    return {"success": True, "message": "Order marked ready for handover", "data": data}


@router.post("/bulk-mark-ready")
@limiter.limit(settings.RATE_LIMIT_BULK)
async def bulk_mark_ready(
    request: Request,
    body: BulkOrdersRequest,
    vendor: Vendor = Depends(get_current_vendor),
    shipway: ShipwayClient = Depends(get_shipway),
    open_store: StoreFactory = Depends(get_store_factory),
):
    async def mark_one(order_id: str) -> dict:
        async with open_store() as store:
            return await ClaimService(store, shipway).mark_ready(order_id, vendor.warehouse_id)

    outcomes = await process_in_batches(
        body.order_ids, mark_one, settings.LABEL_BATCH_SIZE, label="bulk-mark-ready"
    )

    result = BulkResult()
    for order_id, outcome in outcomes:
        if isinstance(outcome, Exception):
            logger.warning(f"Mark-ready failed for order {order_id}: {outcome!r}")
            result.add_failure(order_id, outcome)
        else:
            result.successful.append(order_id)

    return {"success": True, "data": result.to_dict()}


# ==================== Reversal ====================


@router.post("/reverse")
async def reverse_order_line(
    body: ReverseRequest,
    vendor: Vendor = Depends(get_current_vendor),
    service: ClaimService = Depends(get_claim_service),
):
    result = await service.reverse(body.unique_id, vendor.warehouse_id)
    return {
        "success": True,
        "message": "Order line reversed",
        "data": {
            "order_id": result.order_id,
            "unique_ids": result.unique_ids,
            "shipment_cancelled": result.shipment_cancelled,
        },
    }


@router.post("/reverse-grouped")
async def reverse_grouped_order(
    body: ReverseGroupedRequest,
    vendor: Vendor = Depends(get_current_vendor),
    service: ClaimService = Depends(get_claim_service),
):
    result = await service.reverse_grouped(body.order_id, body.unique_ids, vendor.warehouse_id)
    return {
        "success": True,
        "message": f"{len(result.unique_ids)} order line(s) reversed",
        "data": {
            "order_id": result.order_id,
            "unique_ids": result.unique_ids,
            "shipment_cancelled": result.shipment_cancelled,
        },
    }
