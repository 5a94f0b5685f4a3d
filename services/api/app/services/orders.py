"""Read-only helpers over Square order JSON."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from typing import Any

# Zero-priced line carrying the pickup window and contact info; never counted as units.
PICKUP_INFO_LINE_NAME = "Pickup Details"

_DEAD_FULFILLMENT_STATES = {"CANCELED", "FAILED"}


@dataclass(frozen=True, slots=True)
class PaidOrder:
    id: str
    pickup_date: str
    pickup_time: str
    units: int
    total_cents: int
    created_at: str


@dataclass(frozen=True, slots=True)
class DayUsage:
    date: str
    used: int
    remaining: int


def _quantity(value: Any) -> int:
    # Square sends quantities as decimal strings ("2", "1.0").
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _amount(money: Any) -> int | None:
    if isinstance(money, dict) and isinstance(money.get("amount"), int):
        return money["amount"]
    return None


def is_counted_line(item: dict[str, Any]) -> bool:
    if item.get("name") == PICKUP_INFO_LINE_NAME:
        return False
    return (_amount(item.get("base_price_money")) or 0) > 0


def sold_units(order: dict[str, Any]) -> int:
    return sum(
        _quantity(item.get("quantity"))
        for item in order.get("line_items") or []
        if is_counted_line(item)
    )


def returned_units(order: dict[str, Any]) -> int:
    total = 0
    for ret in order.get("returns") or []:
        for item in ret.get("return_line_items") or []:
            if is_counted_line(item):
                total += _quantity(item.get("quantity"))
    return total


def net_units(order: dict[str, Any]) -> int:
    return max(sold_units(order) - returned_units(order), 0)


def pickup_at(order: dict[str, Any]) -> str | None:
    fulfillments = order.get("fulfillments") or []
    if not fulfillments:
        return None
    details = fulfillments[0].get("pickup_details") or {}
    return details.get("pickup_at") or None


def pickup_date(order: dict[str, Any]) -> date | None:
    raw = pickup_at(order)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def net_total_cents(order: dict[str, Any]) -> int:
    net = _amount((order.get("net_amounts") or {}).get("total_money"))
    if net is not None:
        return net
    return _amount(order.get("total_money")) or 0


def all_fulfillments_dead(order: dict[str, Any]) -> bool:
    fulfillments = order.get("fulfillments") or []
    if not fulfillments:
        return False
    return all(f.get("state") in _DEAD_FULFILLMENT_STATES for f in fulfillments)


def to_paid_order(
    order: dict[str, Any], season_days: Iterable[str] | None = None
) -> PaidOrder | None:
    """Reshape a completed order for the admin list, or None if it should not count."""

    raw_pickup = pickup_at(order)
    day = pickup_date(order)
    if raw_pickup is None or day is None:
        return None

    if season_days is not None and day.isoformat() not in set(season_days):
        return None

    if all_fulfillments_dead(order):
        return None

    # Fully refunded orders keep their line items but drop to zero net money.
    total = net_total_cents(order)
    if total <= 0:
        return None

    units = net_units(order)
    if units <= 0:
        return None

    return PaidOrder(
        id=str(order.get("id") or ""),
        pickup_date=day.isoformat(),
        pickup_time=raw_pickup[11:16],
        units=units,
        total_cents=total,
        created_at=order.get("closed_at") or order.get("created_at") or "",
    )


def summarize_orders(
    orders: Iterable[dict[str, Any]],
    *,
    season_days: Iterable[str],
    daily_limit: int,
) -> tuple[list[DayUsage], list[PaidOrder]]:
    days = list(season_days)
    used_by_day: dict[str, int] = {d: 0 for d in days}
    paid: list[PaidOrder] = []

    for order in orders:
        row = to_paid_order(order, days)
        if row is None:
            continue
        used_by_day[row.pickup_date] += row.units
        paid.append(row)

    summary = [
        DayUsage(date=d, used=used_by_day[d], remaining=max(daily_limit - used_by_day[d], 0))
        for d in days
    ]
    paid.sort(key=lambda o: o.created_at, reverse=True)
    return summary, paid
