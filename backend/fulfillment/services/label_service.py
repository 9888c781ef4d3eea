"""
Label Service

Entry point for a vendor's label request on an order:

- Cached:  every owned line already downloaded and the Label row has a URL
           -> return it, no remote call
- Direct:  vendor owns every line -> generate the label for order_id
- Clone:   vendor owns a strict subset -> CloneSaga splits the order first
- None:    vendor owns nothing -> the clone's label (cached, or generated when
           the split stopped before one was stored), otherwise NothingClaimed

download_label_or_warning() is the HTTP-facing variant: failures become a
warning payload plus a best-effort admin notification.
"""
import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from fulfillment.core.error_handler import sanitize_error_message
from fulfillment.core.exceptions import NotFoundError, NothingClaimedError
from fulfillment.core.retry import RetryConfig
from fulfillment.core.utils import utcnow
from fulfillment.models import ClaimStatus
from fulfillment.services.carrier_directory import CarrierDirectory
from fulfillment.services.clone_saga import CloneSaga
from fulfillment.services.notifications import NotificationEmitter
from fulfillment.services.order_payload import LineSnapshot, build_order_payload
from fulfillment.services.order_store import OrderStore
from fulfillment.services.serviceability import ServiceabilityResolver
from fulfillment.services.shipway_client import LabelResponse, ShipwayClient, parse_label_response

logger = logging.getLogger(__name__)

OWNED_STATUSES = (ClaimStatus.CLAIMED.value, ClaimStatus.READY_FOR_HANDOVER.value)

CONTACT_ADMIN = "Please contact admin."


@dataclass
class LabelResult:
    order_id: str
    label_url: Optional[str]
    awb: Optional[str]
    carrier_id: Optional[str] = None
    carrier_name: Optional[str] = None
    label_downloaded: bool = True
    cached: bool = False
    cloned: bool = False
    original_order_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LabelService:

    def __init__(
        self,
        store: OrderStore,
        shipway: ShipwayClient,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.shipway = shipway
        self.retry_config = retry_config
        self.sleep = sleep
        self.clock = clock
        self._resolver: Optional[ServiceabilityResolver] = None

    async def _get_resolver(self) -> ServiceabilityResolver:
        # One resolver per service instance: pincode lookups cached per request/batch item
        if self._resolver is None:
            directory = await CarrierDirectory.load(self.store)
            self._resolver = ServiceabilityResolver(self.shipway, directory)
        return self._resolver

    # ==========================================================================
    # ENTRY POINTS
    # ==========================================================================

    async def download_label(self, order_id: str, warehouse_id: str) -> LabelResult:
        lines = await self.store.get_order_lines(order_id)
        owned = [l for l in lines if l.claimed_by == warehouse_id and l.status in OWNED_STATUSES]

        if not owned:
            from_clone = await self._from_clone(order_id, warehouse_id)
            if from_clone is not None:
                return from_clone
            if not lines:
                raise NotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
            raise NothingClaimedError(
                f"None of the lines of order {order_id} are claimed by you",
                details={"order_id": order_id},
            )

        cached = await self._cached_label(order_id, owned)
        if cached is not None:
            logger.info(f"Returning cached label for order {order_id}")
            return cached

        if len(owned) == len(lines):
            return await self._direct(order_id, owned, warehouse_id)
        return await self._split(order_id, owned, lines, warehouse_id)

    async def download_label_or_warning(self, order_id: str, warehouse_id: str) -> Dict[str, Any]:
        """Never raises: a failure is reported as a warning for the vendor UI."""
        try:
            result = await self.download_label(order_id, warehouse_id)
        except Exception as e:
            logger.error(f"Label generation failed for order {order_id} ({warehouse_id}): {e!r}", exc_info=True)
            await self.store.rollback()
            await NotificationEmitter(self.store).emit(e, order_id=order_id, warehouse_id=warehouse_id)
            return {
                "success": False,
                "warning": True,
                "order_id": order_id,
                "code": getattr(e, "code", "INTERNAL_ERROR"),
                "message": f"Label could not be generated: {sanitize_error_message(e)}. {CONTACT_ADMIN}",
            }

        if not result.label_downloaded:
            return {
                "success": False,
                "warning": True,
                "order_id": result.order_id,
                "data": result.to_dict(),
                "message": "The carrier has not returned a label yet. Please retry the download shortly.",
            }
        return {"success": True, "order_id": result.order_id, "data": result.to_dict()}

    # ==========================================================================
    # CASES
    # ==========================================================================

    async def _cached_label(self, order_id: str, owned: Sequence) -> Optional[LabelResult]:
        if not all(l.label_downloaded for l in owned):
            return None
        label = await self.store.get_label(order_id)
        if label is None or not label.has_usable_url:
            return None
        return LabelResult(
            order_id=order_id,
            label_url=label.label_url,
            awb=label.awb,
            carrier_id=label.carrier_id,
            carrier_name=label.carrier_name,
            cached=True,
            cloned=bool(owned[0].cloned_order_id),
            original_order_id=owned[0].cloned_order_id,
        )

    async def _from_clone(self, original_order_id: str, warehouse_id: str) -> Optional[LabelResult]:
        """
        After a split the original id still reaches the vendor's clone: its
        cached label, or a fresh label when the split stopped short of one.
        """
        cloned = await self.store.get_cloned_lines(original_order_id, warehouse_id)
        owned = [l for l in cloned if l.status in OWNED_STATUSES]
        clone_ids = sorted({l.order_id for l in owned})

        for clone_id in clone_ids:
            cached = await self._cached_label(clone_id, [l for l in owned if l.order_id == clone_id])
            if cached is not None:
                logger.info(f"Order {original_order_id} was split; returning label of {clone_id}")
                return cached

        for clone_id in clone_ids:
            clone_lines = [l for l in owned if l.order_id == clone_id]
            if any(not l.label_downloaded for l in clone_lines):
                logger.info(f"Order {original_order_id} was split without a label; generating one for {clone_id}")
                result = await self._direct(clone_id, clone_lines, warehouse_id)
                result.cloned = True
                result.original_order_id = original_order_id
                return result
        return None

    async def _direct(self, order_id: str, owned: List, warehouse_id: str) -> LabelResult:
        snapshots = tuple(LineSnapshot.of(l) for l in owned)
        remote_order = await self.shipway.get_order(order_id) or {}
        label = await self.generate_label(order_id, snapshots, remote_order, warehouse_id)
        committed = await self.commit_label(order_id, [l.unique_id for l in owned], label)
        return self._result(order_id, label, committed)

    async def _split(self, order_id: str, owned: List, lines: List, warehouse_id: str) -> LabelResult:
        owned_ids = {l.unique_id for l in owned}
        remaining = [l for l in lines if l.unique_id not in owned_ids]

        saga = CloneSaga(
            store=self.store,
            shipway=self.shipway,
            generate_label=lambda oid, snaps, remote: self.generate_label(oid, snaps, remote, warehouse_id),
            commit_label=self.commit_label,
            retry_config=self.retry_config,
            sleep=self.sleep,
            clock=self.clock,
        )
        outcome = await saga.run(order_id, owned, remaining, warehouse_id)
        result = self._result(outcome.snapshot.clone_order_id, outcome.label, outcome.label_committed)
        result.cloned = True
        result.original_order_id = order_id
        return result

    # ==========================================================================
    # LABEL GENERATION
    # ==========================================================================

    async def generate_label(
        self,
        order_id: str,
        lines: Sequence[LineSnapshot],
        remote_order: Dict[str, Any],
        warehouse_id: str,
    ) -> LabelResponse:
        """Resolve the carrier, push the order with label generation, parse the answer."""
        resolver = await self._get_resolver()
        carrier = await resolver.resolve_for_line(lines[0])

        payload = build_order_payload(order_id, lines, remote_order, self.clock())
        body = await self.shipway.push_order(
            payload,
            generate_label=True,
            carrier_id=carrier.carrier_id,
            warehouse_id=warehouse_id,
        )
        label = parse_label_response(body)
        label.carrier_id = label.carrier_id or carrier.carrier_id
        label.carrier_name = label.carrier_name or carrier.name
        logger.info(f"Label generated for order {order_id}: carrier={label.carrier_id} awb={label.awb}")
        return label

    async def commit_label(self, order_id: str, unique_ids: List[str], label: LabelResponse) -> bool:
        """
        Persist a generated label. Without a URL nothing is flagged downloaded
        so a later request regenerates it.
        """
        if not label.has_url:
            logger.warning(f"Label response for order {order_id} had no URL (awb={label.awb}); not marking downloaded")
            return False

        await self.store.upsert_label(
            order_id,
            label_url=label.shipping_url,
            awb=label.awb,
            carrier_id=label.carrier_id,
            carrier_name=label.carrier_name,
        )
        await self.store.set_label_downloaded(unique_ids, True)
        if label.carrier_id:
            await self.store.set_priority_carrier(unique_ids, label.carrier_id)
        await self.store.commit()
        return True

    @staticmethod
    def _result(order_id: str, label: LabelResponse, committed: bool) -> LabelResult:
        return LabelResult(
            order_id=order_id,
            label_url=label.shipping_url,
            awb=label.awb,
            carrier_id=label.carrier_id,
            carrier_name=label.carrier_name,
            label_downloaded=committed,
        )
