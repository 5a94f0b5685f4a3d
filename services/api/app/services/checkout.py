from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import uuid4

from services.api.app.config import Settings
from services.api.app.models.checkout import CheckoutRequest, PickupWindowIn
from services.api.app.services.inventory import InventoryCounter
from services.api.app.services.orders import PICKUP_INFO_LINE_NAME
from services.api.app.services.square_base import SquareAdapter, SquareAdapterError, SquareAPIError

logger = logging.getLogger(__name__)

DEFAULT_PICKUP_START = "10:00"

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])?")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


class CheckoutValidationError(ValueError):
    """The checkout request is missing or has malformed cart or pickup fields."""


@dataclass(frozen=True, slots=True)
class CartLine:
    name: str
    quantity: int
    unit_amount_cents: int


@dataclass(frozen=True, slots=True)
class ValidCheckout:
    lines: list[CartLine]
    pickup_date: date
    currency: str

    @property
    def units(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    payment_link_url: str
    payment_link_id: str | None
    order_id: str | None
    reservation_id: str
    pickup_at: str
    remaining: int
    expires_at: datetime
    payment_link: dict[str, Any] = field(default_factory=dict)


def validate_checkout(req: CheckoutRequest) -> ValidCheckout:
    if not req.cart_items:
        raise CheckoutValidationError("cartItems required")

    lines: list[CartLine] = []
    for idx, item in enumerate(req.cart_items):
        name = (item.name or "").strip()
        if not name:
            raise CheckoutValidationError(f"cartItems[{idx}].name required")
        if item.quantity is None or item.quantity <= 0:
            raise CheckoutValidationError(f"Quantity for {name} must be a positive whole number")
        if item.unit_amount_cents is None or item.unit_amount_cents <= 0:
            raise CheckoutValidationError(f"Price for {name} must be a positive amount in cents")
        lines.append(
            CartLine(name=name, quantity=item.quantity, unit_amount_cents=item.unit_amount_cents)
        )

    raw_date = (req.pickup_date or "").strip()
    if not raw_date:
        raise CheckoutValidationError("pickupDate required")
    try:
        pickup_day = date.fromisoformat(raw_date)
    except ValueError as e:
        raise CheckoutValidationError("pickupDate must be a date in YYYY-MM-DD format") from e

    currency = (req.currency or "USD").strip().upper()
    if not _CURRENCY_RE.match(currency):
        raise CheckoutValidationError("currency must be a 3-letter code")

    return ValidCheckout(lines=lines, pickup_date=pickup_day, currency=currency)


def _parse_clock(text: str | None) -> str | None:
    if not text:
        return None
    if "T" in text:
        text = text.split("T", 1)[1]
    m = _TIME_RE.match(text)
    if not m:
        return None

    hour, minute, meridiem = int(m.group(1)), m.group(2), (m.group(3) or "").lower()
    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0
    if hour > 23 or int(minute) > 59:
        return None
    return f"{hour:02d}:{minute}"


def resolve_pickup_at(
    pickup_day: date,
    pickup_time: str | None,
    pickup_window: PickupWindowIn | None,
    utc_offset: str,
) -> str:
    """Start of the pickup window as an RFC 3339 timestamp at the shop's fixed offset."""

    window_start = pickup_window.start if pickup_window else None
    start = _parse_clock(window_start) or _parse_clock(pickup_time)
    return f"{pickup_day.isoformat()}T{start or DEFAULT_PICKUP_START}:00{utc_offset}"


def pickup_label(
    pickup_day: date, pickup_time: str | None, pickup_window: PickupWindowIn | None
) -> str:
    when = (pickup_time or "").strip()
    if not when and pickup_window and (pickup_window.start or pickup_window.end):
        start = _parse_clock(pickup_window.start) or pickup_window.start or ""
        end = _parse_clock(pickup_window.end) or pickup_window.end or ""
        when = f"{start}-{end}".strip("-")

    label = f"Pickup: {pickup_day.strftime('%a %b %d %Y')}"
    return f"{label} ({when})" if when else label


def pickup_info_text(label: str, req: CheckoutRequest) -> str:
    parts = [
        label,
        req.customer_name and f"Name: {req.customer_name}",
        req.customer_phone and f"Phone: {req.customer_phone}",
        req.customer_email and f"Email: {req.customer_email}",
        req.notes and f"Notes: {req.notes}",
    ]
    return "\n".join(p for p in parts if p)


def site_base_url(redirect_url_base: str | None, headers: Mapping[str, str]) -> str:
    if redirect_url_base and _URL_RE.match(redirect_url_base):
        return redirect_url_base.rstrip("/")

    host = headers.get("host")
    if not host:
        raise CheckoutValidationError("redirectUrlBase required")
    proto = headers.get("x-forwarded-proto") or "https"
    return f"{proto}://{host}"


def build_order_payload(
    checkout: ValidCheckout,
    req: CheckoutRequest,
    *,
    location_id: str,
    tax_percent: str,
    pickup_at: str,
    reservation_id: str,
) -> dict[str, Any]:
    label = pickup_label(checkout.pickup_date, req.pickup_time, req.pickup_window)
    info = pickup_info_text(label, req)

    line_items: list[dict[str, Any]] = [
        {
            "name": line.name,
            "quantity": str(line.quantity),
            "base_price_money": {"amount": line.unit_amount_cents, "currency": checkout.currency},
        }
        for line in checkout.lines
    ]
    # Square prints line-item notes on kitchen tickets, so the pickup info rides along here.
    line_items.append(
        {
            "name": PICKUP_INFO_LINE_NAME,
            "quantity": "1",
            "base_price_money": {"amount": 0, "currency": checkout.currency},
            "note": info,
        }
    )

    recipient = {
        "display_name": req.customer_name or "Customer",
        "phone_number": req.customer_phone,
        "email_address": req.customer_email,
    }

    return {
        "location_id": location_id,
        "reference_id": reservation_id,
        "metadata": {
            "reservation_id": reservation_id,
            "pickup_date": checkout.pickup_date.isoformat(),
        },
        "line_items": line_items,
        "taxes": [
            {
                "uid": "default-tax",
                "name": "Sales Tax",
                "type": "ADDITIVE",
                "scope": "ORDER",
                "percentage": tax_percent,
            }
        ],
        "fulfillments": [
            {
                "type": "PICKUP",
                "state": "PROPOSED",
                "pickup_details": {
                    "schedule_type": "SCHEDULED",
                    "pickup_at": pickup_at,
                    "note": info,
                    "recipient": {k: v for k, v in recipient.items() if v},
                },
            }
        ],
    }


def create_checkout(
    req: CheckoutRequest,
    *,
    counter: InventoryCounter,
    adapter: SquareAdapter,
    settings: Settings,
    headers: Mapping[str, str],
) -> CheckoutResult:
    """Reserve inventory and create a Square payment link.

    The reservation is released again if Square does not hand back a usable link, so failed
    checkouts never eat into the daily limit.
    """

    checkout = validate_checkout(req)
    when = resolve_pickup_at(
        checkout.pickup_date, req.pickup_time, req.pickup_window, settings.pickup_utc_offset
    )
    redirect_url = site_base_url(req.redirect_url_base, headers) + settings.success_path
    idempotency_key = (req.idempotency_key or "").strip() or uuid4().hex

    reserved = counter.reserve(
        checkout.pickup_date, checkout.units, idempotency_key=idempotency_key
    )

    order = build_order_payload(
        checkout,
        req,
        location_id=adapter.location_id,
        tax_percent=settings.tax_percent,
        pickup_at=when,
        reservation_id=reserved.reservation_id,
    )

    try:
        payload = adapter.create_payment_link(
            order=order, idempotency_key=idempotency_key, redirect_url=redirect_url
        )
        link = payload.get("payment_link") or {}
        url = link.get("url") or link.get("long_url")
        if not url:
            raise SquareAPIError(502, [{"detail": "Square did not return a payment link URL"}])
    except SquareAdapterError as e:
        logger.error(
            "Payment link failed for %s (reservation %s): %s",
            checkout.pickup_date,
            reserved.reservation_id,
            e,
        )
        counter.release(reserved.reservation_id)
        raise

    counter.attach_order(
        reserved.reservation_id, order_id=link.get("order_id"), payment_link_id=link.get("id")
    )
    logger.info(
        "Checkout for %s units on %s -> order %s",
        checkout.units,
        checkout.pickup_date,
        link.get("order_id"),
    )

    return CheckoutResult(
        payment_link_url=url,
        payment_link_id=link.get("id"),
        order_id=link.get("order_id"),
        reservation_id=reserved.reservation_id,
        pickup_at=when,
        remaining=reserved.remaining,
        expires_at=reserved.expires_at,
        payment_link=payload,
    )
