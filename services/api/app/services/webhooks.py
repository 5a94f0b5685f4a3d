from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

from services.api.app.services.inventory import InventoryCounter
from services.api.app.services.orders import net_units, pickup_date
from services.api.app.services.square_base import SquareAdapter, SquareAPIError

logger = logging.getLogger(__name__)


class WebhookIgnored(Exception):
    """The delivery is acknowledged but changes nothing."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class WebhookSignatureError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class WebhookOutcome:
    status: str
    detail: str


def verify_signature(
    body: bytes, signature: str | None, *, key: str, notification_url: str
) -> None:
    # Square signs notification_url + raw body with the subscription's signature key.
    mac = hmac.new(key.encode(), notification_url.encode() + body, hashlib.sha256).digest()
    expected = base64.b64encode(mac).decode()
    if not signature or not hmac.compare_digest(expected, signature):
        raise WebhookSignatureError("Invalid signature")


def parse_event(body: bytes) -> dict[str, Any]:
    event = json.loads(body.decode("utf-8") or "{}")
    if not isinstance(event, dict):
        raise ValueError("Webhook body must be a JSON object")
    return event


def handle_payment_event(
    event: dict[str, Any],
    *,
    adapter: SquareAdapter,
    counter: InventoryCounter,
) -> WebhookOutcome:
    """Count the paid units of a completed payment against its pickup date.

    Data problems raise WebhookIgnored since Square redelivering the same payload cannot fix
    them. Transient Square failures and store failures propagate so the delivery is retried.
    """

    event_type = str(event.get("type") or "")
    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    payment = obj.get("payment") if isinstance(obj, dict) else None

    if not isinstance(payment, dict) or not event_type.startswith("payment."):
        raise WebhookIgnored("not a payment event")

    if payment.get("status") != "COMPLETED":
        raise WebhookIgnored("payment not completed")

    payment_id = payment.get("id")
    order_id = payment.get("order_id")
    if not payment_id or not order_id:
        logger.error("Completed payment without id/order_id: %s", payment_id)
        raise WebhookIgnored("no order_id on payment")

    try:
        order = adapter.get_order(order_id)
    except SquareAPIError as e:
        if e.is_transient:
            raise
        logger.error("Could not fetch order %s for payment %s: %s", order_id, payment_id, e)
        raise WebhookIgnored("could not fetch order") from e

    day = pickup_date(order)
    if day is None:
        logger.error("No pickup date on order %s (payment %s)", order_id, payment_id)
        raise WebhookIgnored("no pickup date on order")

    units = net_units(order)
    if units <= 0:
        logger.info("Order %s has no paid units, skipping", order_id)
        raise WebhookIgnored("no paid units on order")

    metadata = order.get("metadata") or {}
    reservation_id = order.get("reference_id") or metadata.get("reservation_id")
    counted = counter.confirm_payment(
        payment_id,
        day,
        units,
        reservation_id=reservation_id,
        order_id=order_id,
    )
    if not counted:
        return WebhookOutcome(status="duplicate", detail=f"payment {payment_id} already counted")

    return WebhookOutcome(status="ok", detail=f"counted {units} units for {day.isoformat()}")
