from __future__ import annotations

import hmac
import logging
from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException
from packages.shared.schemas.events import EventV1
from services.api.app.config import Settings, get_settings
from services.api.app.db.deps import get_db
from services.api.app.models.admin import (
    AdminOrderOut,
    AdminOrdersResponse,
    DaySummaryOut,
    LocationOut,
)
from services.api.app.services.events import list_events
from services.api.app.services.inventory import InventoryCounter, PersistenceError
from services.api.app.services.orders import summarize_orders
from services.api.app.services.square_base import (
    SquareAdapter,
    SquareAPIError,
    SquareUnavailableError,
)
from services.api.app.services.square_factory import square_adapter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def require_admin(authorization: str | None = Header(default=None)) -> None:
    token = get_settings().admin_token
    if not token:
        return

    scheme, _, value = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(value.encode(), token.encode()):
        raise HTTPException(status_code=401, detail="Admin token required")


router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


def _raise_admin_http_error(e: Exception) -> None:
    if isinstance(e, SquareUnavailableError):
        raise HTTPException(
            status_code=503, detail="Payments provider temporarily unavailable"
        ) from e

    if isinstance(e, SquareAPIError):
        raise HTTPException(status_code=500, detail=e.detail) from e

    if isinstance(e, (PersistenceError, SQLAlchemyError)):
        raise HTTPException(status_code=500, detail="Inventory store unavailable") from e

    logger.exception("Unexpected admin failure")
    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def completed_orders_query(settings: Settings) -> dict:
    return {
        "filter": {
            "state_filter": {"states": ["COMPLETED"]},
            "date_time_filter": {
                "closed_at": {"start_at": settings.season_start, "end_at": settings.season_end}
            },
        }
    }


@router.get("/orders", response_model=AdminOrdersResponse)
def admin_orders(
    db: Session = Depends(get_db),
    adapter: SquareAdapter = Depends(square_adapter),
) -> AdminOrdersResponse:
    settings = get_settings()
    counter = InventoryCounter.from_settings(db, settings)

    try:
        orders = adapter.search_orders(
            completed_orders_query(settings),
            sort={"sort_field": "CLOSED_AT", "sort_order": "DESC"},
        )
        days, paid = summarize_orders(
            orders, season_days=settings.season_days, daily_limit=settings.daily_limit
        )
        summary = [
            DaySummaryOut(
                date=d.date,
                used=d.used,
                remaining=d.remaining,
                committed=counter.get_used(date.fromisoformat(d.date)),
            )
            for d in days
        ]
    except Exception as e:
        _raise_admin_http_error(e)

    return AdminOrdersResponse(
        days_summary=summary,
        orders=[
            AdminOrderOut(
                id=o.id,
                pickup_date=o.pickup_date,
                pickup_time=o.pickup_time,
                units=o.units,
                total=f"{o.total_cents / 100:.2f}",
                created_at=o.created_at,
            )
            for o in paid
        ],
    )


@router.get("/locations", response_model=list[LocationOut])
def admin_locations(adapter: SquareAdapter = Depends(square_adapter)) -> list[LocationOut]:
    try:
        locations = adapter.list_locations()
    except Exception as e:
        _raise_admin_http_error(e)

    return [
        LocationOut(id=loc.get("id", ""), name=loc.get("name", ""), status=loc.get("status", ""))
        for loc in locations
    ]


@router.get("/events", response_model=list[EventV1])
def admin_events(limit: int = 100, db: Session = Depends(get_db)) -> list[EventV1]:
    try:
        return list_events(db, limit=min(limit, 500))
    except Exception as e:
        _raise_admin_http_error(e)
