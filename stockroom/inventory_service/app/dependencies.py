"""Dependency helpers for the inventory service."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockroom.common import ServiceSettings, get_settings, lifespan_session

from .allocation import CostOrder
from .authorization import CostVisibility, RoleCostVisibility
from .errors import (
    ConcurrentModificationError,
    CostVisibilityError,
    InsufficientAvailabilityError,
    InsufficientInstancesError,
    InsufficientStockError,
    InventoryError,
    NotFoundError,
    OverRemovalError,
    TagStateError,
)
from .repository import InventoryRepository
from .services import InventoryService, TagService
from .stock_status import StockThresholds

_CONFLICT_ERRORS = (
    ConcurrentModificationError,
    InsufficientAvailabilityError,
    InsufficientInstancesError,
    InsufficientStockError,
    OverRemovalError,
    TagStateError,
)


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> InventoryRepository:
    return InventoryRepository(session)


def get_service_settings(request: Request) -> ServiceSettings:
    settings = getattr(request.app.state, "settings", None)
    if isinstance(settings, ServiceSettings):
        return settings
    return get_settings()


def get_actor(user: str | None = Header(default=None, alias="X-Stockroom-User")) -> str:
    cleaned = (user or "").strip()
    return cleaned or "system"


def get_cost_visibility(
    role: str | None = Header(default=None, alias="X-Stockroom-Role"),
    settings: ServiceSettings = Depends(get_service_settings),
) -> CostVisibility:
    return RoleCostVisibility.for_role(role, settings.cost_visible_roles)


def get_inventory_service(
    repository: InventoryRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
) -> InventoryService:
    return InventoryService(
        repository,
        default_thresholds=StockThresholds(
            understocked=settings.default_understocked,
            overstocked=settings.default_overstocked,
        ),
        cost_order=CostOrder(settings.cost_selection_order),
    )


def get_tag_service(
    repository: InventoryRepository = Depends(get_repository),
    settings: ServiceSettings = Depends(get_service_settings),
    actor: str = Depends(get_actor),
) -> TagService:
    return TagService(repository, cost_order=CostOrder(settings.cost_selection_order), actor=actor)


def http_error(exc: InventoryError) -> HTTPException:
    """Translate a domain error into the matching HTTP response."""

    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, CostVisibilityError):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, _CONFLICT_ERRORS):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=exc.to_dict())
