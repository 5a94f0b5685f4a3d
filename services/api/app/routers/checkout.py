from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from services.api.app.config import get_settings
from services.api.app.db.deps import get_db
from services.api.app.models.checkout import AvailabilityResponse, CheckoutRequest, CheckoutResponse
from services.api.app.services.checkout import CheckoutValidationError, create_checkout
from services.api.app.services.inventory import (
    InventoryCounter,
    InventoryExceeded,
    PersistenceError,
    ReservationClosedError,
)
from services.api.app.services.square_base import (
    SquareAdapter,
    SquareAdapterError,
    SquareAPIError,
    SquareUnavailableError,
)
from services.api.app.services.square_factory import square_adapter
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

router = APIRouter()


def _raise_checkout_http_error(e: Exception) -> None:
    if isinstance(e, CheckoutValidationError):
        raise HTTPException(status_code=400, detail=str(e)) from e

    if isinstance(e, InventoryExceeded):
        raise HTTPException(
            status_code=409,
            detail={"error": e.user_message, "remaining": e.remaining},
        ) from e

    if isinstance(e, ReservationClosedError):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, SquareUnavailableError):
        raise HTTPException(
            status_code=503,
            detail="Payments are temporarily unavailable. Please try again in a minute.",
        ) from e

    if isinstance(e, SquareAPIError):
        raise HTTPException(status_code=400, detail=e.detail) from e

    if isinstance(e, SquareAdapterError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    if isinstance(e, PersistenceError):
        raise HTTPException(status_code=500, detail="Inventory store unavailable") from e

    logger.exception("Unexpected checkout failure")
    raise HTTPException(status_code=500, detail="Internal Server Error") from e


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    payload: CheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    adapter: SquareAdapter = Depends(square_adapter),
) -> CheckoutResponse:
    settings = get_settings()
    counter = InventoryCounter.from_settings(db, settings)

    try:
        result = create_checkout(
            payload,
            counter=counter,
            adapter=adapter,
            settings=settings,
            headers=request.headers,
        )
    except Exception as e:
        _raise_checkout_http_error(e)

    return CheckoutResponse(
        payment_link_url=result.payment_link_url,
        payment_link_id=result.payment_link_id,
        order_id=result.order_id,
        reservation_id=result.reservation_id,
        pickup_at=result.pickup_at,
        remaining=result.remaining,
        expires_at=result.expires_at.isoformat(),
        payment_link=result.payment_link,
    )


@router.get("/availability", response_model=AvailabilityResponse)
def availability(
    pickup_date: str = Query(..., alias="date"),
    db: Session = Depends(get_db),
) -> AvailabilityResponse:
    try:
        day = date.fromisoformat(pickup_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD") from e

    settings = get_settings()
    counter = InventoryCounter.from_settings(db, settings)
    try:
        counter.release_expired()
        used = counter.get_used(day)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail="Inventory store unavailable") from e

    return AvailabilityResponse(
        date=day.isoformat(),
        used=used,
        remaining=max(settings.daily_limit - used, 0),
        limit=settings.daily_limit,
    )
