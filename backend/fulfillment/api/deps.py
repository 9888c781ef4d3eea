"""
API dependencies
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fulfillment.core.database import get_db, get_session_factory
from fulfillment.core.exceptions import ForbiddenError, UnauthorizedError
from fulfillment.models import Vendor
from fulfillment.services.auto_reversal import AutoReversalSweeper
from fulfillment.services.claim_service import ClaimService
from fulfillment.services.label_service import LabelService
from fulfillment.services.order_store import OrderStore
from fulfillment.services.shipway_client import ShipwayClient

security = HTTPBearer(auto_error=False)


async def get_current_vendor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Vendor:
    """Resolve the bearer token to a vendor with an active session."""
    if not credentials or not credentials.credentials:
        raise UnauthorizedError("Authentication token required")

    result = await db.execute(select(Vendor).where(Vendor.token == credentials.credentials))
    vendor = result.scalar_one_or_none()

    if not vendor:
        raise UnauthorizedError("Invalid token")

    if not vendor.active_session:
        raise UnauthorizedError("Session is not active, please log in again")

    return vendor


async def get_current_admin(vendor: Vendor = Depends(get_current_vendor)) -> Vendor:
    """Require admin role"""
    if not vendor.is_admin:
        raise ForbiddenError("Admin access required")
    return vendor


def get_shipway(request: Request) -> ShipwayClient:
    """The application's shared Shipway client (created in lifespan)."""
    return request.app.state.shipway


def get_sweeper(request: Request) -> AutoReversalSweeper:
    return request.app.state.auto_reversal_sweeper


def get_store(db: AsyncSession = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_claim_service(
    store: OrderStore = Depends(get_store),
    shipway: ShipwayClient = Depends(get_shipway),
) -> ClaimService:
    return ClaimService(store, shipway)


def get_label_service(
    store: OrderStore = Depends(get_store),
    shipway: ShipwayClient = Depends(get_shipway),
) -> LabelService:
    return LabelService(store, shipway)


StoreFactory = Callable[[], "AsyncIterator[OrderStore]"]


def get_store_factory(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> StoreFactory:
    """
    Opens one OrderStore per concurrently processed order in bulk routes.

    Usage:
        async with open_store() as store:
            ...
    """

    @asynccontextmanager
    async def open_store():
        async with session_factory() as session:
            try:
                yield OrderStore(session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return open_store
