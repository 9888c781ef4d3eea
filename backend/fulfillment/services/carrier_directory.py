"""
Carrier Directory

Query view over the carriers table: which carriers are active and how they
rank. Also syncs the table from the remote carrier list.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from fulfillment.models import Carrier, CarrierStatus
from fulfillment.services.order_store import OrderStore
from fulfillment.services.shipway_client import ShipwayClient

logger = logging.getLogger(__name__)

# Remote carrier names carry the weight slab, e.g. "Delhivery Surface (2kg)"
WEIGHT_IN_NAME = re.compile(r"\((\d+(?:\.\d+)?)\s*kg\)", re.IGNORECASE)


@dataclass(frozen=True)
class CarrierEntry:
    carrier_id: str
    name: str
    priority: int
    active: bool

    @property
    def sort_key(self):
        # Lowest priority wins; ties go to the lowest carrier_id
        return (self.priority, self.carrier_id)


def weight_from_name(name: str) -> Optional[float]:
    match = WEIGHT_IN_NAME.search(name or "")
    return float(match.group(1)) if match else None


class CarrierDirectory:
    """Active carriers keyed by carrier_id."""

    def __init__(self, entries: Iterable[CarrierEntry]):
        self._entries: Dict[str, CarrierEntry] = {e.carrier_id: e for e in entries}

    @classmethod
    async def load(cls, store: OrderStore) -> "CarrierDirectory":
        carriers = await store.list_carriers()
        return cls(
            CarrierEntry(
                carrier_id=str(c.carrier_id),
                name=c.carrier_name or "",
                priority=int(c.priority or 0),
                active=c.is_active,
            )
            for c in carriers
        )

    def get(self, carrier_id: str) -> Optional[CarrierEntry]:
        return self._entries.get(str(carrier_id))

    def best_of(self, carrier_ids: Iterable[str]) -> Optional[CarrierEntry]:
        """The most preferred active carrier among carrier_ids, or None."""
        candidates = [
            entry for entry in (self.get(cid) for cid in set(str(c) for c in carrier_ids))
            if entry is not None and entry.active
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda e: e.sort_key)

    def __len__(self):
        return len(self._entries)


async def sync_carriers(store: OrderStore, shipway: ShipwayClient) -> dict:
    """
    Reconcile the carriers table with the remote carrier list.

    Existing carriers keep their priority (name/weight refreshed, reactivated
    if they reappear); carriers gone remotely are deactivated; new carriers
    are appended after the current lowest preference.
    """
    remote = await shipway.list_carriers()
    existing = {str(c.carrier_id): c for c in await store.list_carriers()}
    next_priority = max((int(c.priority or 0) for c in existing.values()), default=0) + 1

    stats = {"remote": len(remote), "added": 0, "updated": 0, "deactivated": 0}
    seen = set()

    for item in remote:
        carrier_id = item.get("id") or item.get("carrier_id")
        if carrier_id in (None, ""):
            continue
        carrier_id = str(carrier_id)
        seen.add(carrier_id)
        name = str(item.get("name") or item.get("carrier_name") or "Unknown Carrier")

        current = existing.get(carrier_id)
        if current is None:
            await store.add_carrier(Carrier(
                carrier_id=carrier_id,
                carrier_name=name,
                status=CarrierStatus.ACTIVE.value,
                priority=next_priority,
                weight_in_kg=weight_from_name(name),
            ))
            logger.info(f"Added carrier {carrier_id} ({name}) with priority {next_priority}")
            next_priority += 1
            stats["added"] += 1
        else:
            current.carrier_name = name
            current.weight_in_kg = weight_from_name(name)
            current.status = CarrierStatus.ACTIVE.value
            stats["updated"] += 1

    for carrier_id, carrier in existing.items():
        if carrier_id not in seen and carrier.is_active:
            carrier.status = CarrierStatus.INACTIVE.value
            stats["deactivated"] += 1

    await store.commit()
    logger.info(
        f"Carrier sync: {stats['added']} added, {stats['updated']} updated, "
        f"{stats['deactivated']} deactivated"
    )
    return stats
