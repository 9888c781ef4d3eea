"""
Clone Saga

Splits an order whose lines are only partly owned by the requesting vendor:
the vendor's lines move to a new clone order (original_id + "_N") that gets
its own label, the other lines stay on the original order.

Steps (each retried with backoff; every attempt reads the same snapshot):
0. Prepare         pick clone id, snapshot lines, fetch remote original
1. Create clone    push clone order with the claimed lines, no label
2. Verify clone    clone order visible remotely
3. Update original push original with only the remaining lines
4. Verify original original lists exactly the remaining products
5. Update local    move claimed lines to the clone id
6. Generate label  label for the clone id
7. Commit label    store URL/AWB and flag lines downloaded, only with a URL

Remote steps already confirmed are not compensated when a later step fails;
the clone order stays live remotely and a new request starts over with a
fresh snapshot.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from fulfillment.core.exceptions import RemoteUnconfirmedError
from fulfillment.core.retry import RetryConfig, retry_step
from fulfillment.core.utils import utcnow
from fulfillment.models import OrderLine
from fulfillment.services.order_payload import (
    LineSnapshot,
    build_order_payload,
    remote_product_codes,
)
from fulfillment.services.order_store import OrderStore
from fulfillment.services.shipway_client import LabelResponse, ShipwayClient

logger = logging.getLogger(__name__)

# Upper bound on "_N" suffixes tried before giving up on a free clone id
MAX_CLONE_SUFFIX = 100


@dataclass(frozen=True)
class SagaSnapshot:
    """Everything the saga needs, captured once before step 1."""
    original_order_id: str
    clone_order_id: str
    warehouse_id: str
    claimed: Tuple[LineSnapshot, ...]
    remaining: Tuple[LineSnapshot, ...]
    remote_order: Dict[str, Any]
    created_at: datetime

    @property
    def claimed_ids(self) -> List[str]:
        return [l.unique_id for l in self.claimed]

    @property
    def remaining_ids(self) -> List[str]:
        return [l.unique_id for l in self.remaining]

    def clone_payload(self) -> Dict:
        return build_order_payload(self.clone_order_id, self.claimed, self.remote_order, self.created_at)

    def remaining_payload(self) -> Optional[Dict]:
        if not self.remaining:
            return None
        return build_order_payload(self.original_order_id, self.remaining, self.remote_order, self.created_at)


@dataclass
class SagaOutcome:
    snapshot: SagaSnapshot
    label: LabelResponse
    label_committed: bool


# generate(order_id, line_snapshots, remote_order) -> LabelResponse
LabelGenerator = Callable[[str, Tuple[LineSnapshot, ...], Dict[str, Any]], Awaitable[LabelResponse]]


class CloneSaga:

    def __init__(
        self,
        store: OrderStore,
        shipway: ShipwayClient,
        generate_label: LabelGenerator,
        commit_label: Callable[[str, List[str], LabelResponse], Awaitable[bool]],
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.shipway = shipway
        self.generate_label = generate_label
        self.commit_label = commit_label
        self.retry_config = retry_config
        self.sleep = sleep
        self.clock = clock

    async def _step(self, name: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        return await retry_step(name, operation, config=self.retry_config, sleep=self.sleep)

    async def run(
        self,
        original_order_id: str,
        claimed: List[OrderLine],
        remaining: List[OrderLine],
        warehouse_id: str,
    ) -> SagaOutcome:
        logger.info(
            f"[SAGA] Splitting order {original_order_id}: {len(claimed)} claimed line(s) for "
            f"{warehouse_id}, {len(remaining)} remaining"
        )

        snapshot: SagaSnapshot = await self._step(
            "prepare",
            lambda: self._prepare(original_order_id, claimed, remaining, warehouse_id),
        )
        clone_id = snapshot.clone_order_id
        logger.info(f"[SAGA] {original_order_id}: clone id {clone_id}")

        await self._step("create_clone", lambda: self._create_clone(snapshot))
        await self._step("verify_clone", lambda: self._verify_clone(snapshot))
        await self._step("update_original", lambda: self._update_original(snapshot))
        await self._step("verify_original", lambda: self._verify_original(snapshot))
        await self._step("update_local", lambda: self._update_local(snapshot))

        label = await self._step(
            "generate_label",
            lambda: self.generate_label(clone_id, self._as_clone_lines(snapshot), snapshot.remote_order),
        )
        committed = await self._step(
            "commit_label",
            lambda: self.commit_label(clone_id, snapshot.claimed_ids, label),
        )

        logger.info(
            f"[SAGA] {original_order_id} -> {clone_id} complete "
            f"(awb={label.awb}, label_committed={committed})"
        )
        return SagaOutcome(snapshot=snapshot, label=label, label_committed=committed)

    # ==========================================================================
    # STEPS
    # ==========================================================================

    async def _prepare(
        self,
        original_order_id: str,
        claimed: List[OrderLine],
        remaining: List[OrderLine],
        warehouse_id: str,
    ) -> SagaSnapshot:
        clone_id = await self._next_clone_id(original_order_id)

        remote_order = await self.shipway.get_order(original_order_id)
        if remote_order is None:
            raise RemoteUnconfirmedError(
                f"Order {original_order_id} not found on the order-management system",
                order_id=original_order_id,
            )

        return SagaSnapshot(
            original_order_id=original_order_id,
            clone_order_id=clone_id,
            warehouse_id=warehouse_id,
            claimed=tuple(LineSnapshot.of(l) for l in claimed),
            remaining=tuple(LineSnapshot.of(l) for l in remaining),
            remote_order=dict(remote_order),
            created_at=self.clock(),
        )

    async def _next_clone_id(self, original_order_id: str) -> str:
        for n in range(1, MAX_CLONE_SUFFIX + 1):
            candidate = f"{original_order_id}_{n}"
            if await self.store.order_id_exists(candidate):
                continue
            if await self.shipway.order_exists(candidate):
                continue
            return candidate
        raise RemoteUnconfirmedError(
            f"No free clone id for order {original_order_id}",
            order_id=original_order_id,
        )

    async def _create_clone(self, snapshot: SagaSnapshot) -> None:
        await self.shipway.push_order(snapshot.clone_payload(), generate_label=False)

    async def _verify_clone(self, snapshot: SagaSnapshot) -> None:
        if not await self.shipway.order_exists(snapshot.clone_order_id):
            raise RemoteUnconfirmedError(
                f"Clone order {snapshot.clone_order_id} not visible after creation",
                order_id=snapshot.clone_order_id,
            )

    async def _update_original(self, snapshot: SagaSnapshot) -> None:
        payload = snapshot.remaining_payload()
        if payload is None:
            logger.info(f"[SAGA] {snapshot.original_order_id}: no remaining lines, original left as is")
            return
        await self.shipway.push_order(payload, generate_label=False)

    async def _verify_original(self, snapshot: SagaSnapshot) -> None:
        if not snapshot.remaining:
            return
        remote = await self.shipway.get_order(snapshot.original_order_id)
        if remote is None:
            raise RemoteUnconfirmedError(
                f"Order {snapshot.original_order_id} not visible after update",
                order_id=snapshot.original_order_id,
            )

        remote_codes = remote_product_codes(remote)
        expected = [l.product_code for l in snapshot.remaining if l.product_code]
        if remote_codes is not None and expected and Counter(remote_codes) != Counter(expected):
            raise RemoteUnconfirmedError(
                f"Order {snapshot.original_order_id} still lists products that moved to "
                f"{snapshot.clone_order_id}",
                order_id=snapshot.original_order_id,
                details={"remote_products": remote_codes, "expected_products": expected},
            )

    async def _update_local(self, snapshot: SagaSnapshot) -> None:
        moved = await self.store.move_lines_to_clone(
            snapshot.claimed_ids,
            snapshot.clone_order_id,
            snapshot.original_order_id,
        )
        await self.store.commit()
        logger.info(f"[SAGA] Moved {moved} line(s) to {snapshot.clone_order_id}")

    @staticmethod
    def _as_clone_lines(snapshot: SagaSnapshot) -> Tuple[LineSnapshot, ...]:
        return tuple(
            replace(line, order_id=snapshot.clone_order_id)
            for line in snapshot.claimed
        )
