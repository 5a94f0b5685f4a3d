from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from services.api.app.config import get_settings
from services.api.app.db.deps import get_db
from services.api.app.models.webhook import WebhookAck
from services.api.app.services.inventory import InventoryCounter, PersistenceError
from services.api.app.services.square_base import SquareAdapter, SquareAdapterError
from services.api.app.services.square_factory import square_adapter
from services.api.app.services.webhooks import (
    WebhookIgnored,
    WebhookSignatureError,
    handle_payment_event,
    parse_event,
    verify_signature,
)
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/webhooks/payment", response_model=WebhookAck)
def payment_webhook(
    request: Request,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    adapter: SquareAdapter = Depends(square_adapter),
) -> WebhookAck:
    settings = get_settings()

    if settings.square_webhook_signature_key:
        try:
            verify_signature(
                body,
                request.headers.get(SIGNATURE_HEADER),
                key=settings.square_webhook_signature_key,
                notification_url=settings.square_webhook_url or str(request.url),
            )
        except WebhookSignatureError as e:
            logger.warning("Rejected webhook with bad signature")
            raise HTTPException(status_code=401, detail=str(e)) from e

    try:
        event = parse_event(body)
    except ValueError as e:
        logger.error("Failed to parse webhook body: %s", e)
        raise HTTPException(status_code=400, detail="Invalid JSON") from e

    counter = InventoryCounter.from_settings(db, settings)
    try:
        outcome = handle_payment_event(event, adapter=adapter, counter=counter)
    except WebhookIgnored as e:
        return WebhookAck(status="ignored", detail=e.reason)
    except SquareAdapterError as e:
        # Transient on Square's side; a non-2xx makes Square redeliver later.
        logger.warning("Webhook %s deferred: %s", event.get("event_id"), e)
        raise HTTPException(
            status_code=503, detail="Payments provider temporarily unavailable"
        ) from e
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail="Inventory store unavailable") from e

    return WebhookAck(status=outcome.status, detail=outcome.detail)
