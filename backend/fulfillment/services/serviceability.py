"""
Priority Carrier Resolver

For a claimed order line: ask the serviceability API which carriers deliver
to the line's pincode, keep the entries whose payment_type matches exactly,
intersect with the active carrier directory and pick the lowest priority
(ties broken by carrier_id).

A resolver instance is one batch: each distinct pincode is queried once and
cached for the resolver's lifetime.
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from fulfillment.core.exceptions import (
    InvalidStateError,
    NoServiceableCarrierError,
    RemoteError,
)
from fulfillment.models import OrderLine, ClaimStatus
from fulfillment.services.carrier_directory import CarrierDirectory, CarrierEntry
from fulfillment.services.order_store import OrderStore
from fulfillment.services.shipway_client import ShipwayClient, ServiceableCarrier

logger = logging.getLogger(__name__)


class ServiceabilityResolver:

    def __init__(
        self,
        shipway: ShipwayClient,
        directory: CarrierDirectory,
        tolerate_remote_errors: bool = False,
    ):
        self.shipway = shipway
        self.directory = directory
        # Bulk mode: a failing pincode lookup counts as "no carriers"
        self.tolerate_remote_errors = tolerate_remote_errors
        self._cache: Dict[str, List[ServiceableCarrier]] = {}
        self.api_calls = 0

    async def carriers_for(self, pincode: str) -> List[ServiceableCarrier]:
        pincode = str(pincode).strip()
        if pincode in self._cache:
            return self._cache[pincode]

        self.api_calls += 1
        try:
            carriers = await self.shipway.check_pincode(pincode)
        except RemoteError as e:
            if not self.tolerate_remote_errors:
                raise
            logger.warning(f"Serviceability check failed for pincode {pincode}: {e}")
            carriers = []

        if not carriers:
            logger.warning(f"No serviceable carriers returned for pincode {pincode}")
        self._cache[pincode] = carriers
        return carriers

    async def resolve(self, pincode: Optional[str], payment_type: Optional[str]) -> CarrierEntry:
        if not pincode or not payment_type:
            raise NoServiceableCarrierError(
                "Missing pincode or payment type",
                pincode=pincode,
                payment_type=payment_type,
            )

        serviceable = await self.carriers_for(pincode)
        matching_ids = [c.carrier_id for c in serviceable if c.payment_type == payment_type]
        selected = self.directory.best_of(matching_ids)

        if selected is None:
            raise NoServiceableCarrierError(
                f"No active carrier services pincode {pincode} for payment type {payment_type}",
                pincode=pincode,
                payment_type=payment_type,
            )

        logger.info(
            f"Pincode {pincode}/{payment_type}: selected carrier {selected.carrier_id} "
            f"(priority {selected.priority})"
        )
        return selected

    async def resolve_for_line(self, line: OrderLine) -> CarrierEntry:
        if line.status != ClaimStatus.CLAIMED.value or not line.claimed_by:
            raise InvalidStateError(
                f"Order line {line.unique_id} must be claimed before a carrier is chosen",
                unique_id=line.unique_id,
                current_status=line.status,
            )
        return await self.resolve(line.pincode, line.payment_type)


async def assign_priority_carriers(store: OrderStore, shipway: ShipwayClient) -> dict:
    """
    Resolve and store priority_carrier for every claimed line.

    Lines that cannot be resolved are left with priority_carrier cleared and
    counted as skipped.
    """
    directory = await CarrierDirectory.load(store)
    resolver = ServiceabilityResolver(shipway, directory, tolerate_remote_errors=True)
    lines = await store.get_claimed_lines()

    groups: Dict[Tuple[str, str], List[str]] = defaultdict(list)
    skipped_ids: List[str] = []
    for line in lines:
        if not line.pincode or not line.payment_type:
            logger.warning(f"Order line {line.unique_id}: missing pincode or payment_type")
            skipped_ids.append(line.unique_id)
            continue
        groups[(str(line.pincode).strip(), line.payment_type)].append(line.unique_id)

    assigned = 0
    for (pincode, payment_type), unique_ids in sorted(groups.items()):
        try:
            carrier = await resolver.resolve(pincode, payment_type)
        except NoServiceableCarrierError:
            skipped_ids.extend(unique_ids)
            continue
        await store.set_priority_carrier(unique_ids, carrier.carrier_id)
        assigned += len(unique_ids)

    if skipped_ids:
        await store.set_priority_carrier(skipped_ids, None)
    await store.commit()

    claimed = len(lines)
    success_rate = (assigned / claimed * 100) if claimed else 0.0
    summary = {
        "claimed_lines": claimed,
        "assigned": assigned,
        "skipped": len(skipped_ids),
        "pincodes_checked": resolver.api_calls,
        "success_rate": f"{success_rate:.2f}%",
    }
    logger.info(f"Priority carrier assignment complete: {summary}")
    return summary
