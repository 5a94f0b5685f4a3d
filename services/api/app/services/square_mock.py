from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from services.api.app.services.square_base import SquareAPIError


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SquareMockAdapter:
    """In-memory stand-in for Square, for local dev and tests.

    Payment links create OPEN orders; `complete_order` plays the customer paying. Search
    results are paginated with `page_size` so cursor handling is exercised.
    """

    vendor = "SQUARE_MOCK"

    def __init__(self, *, location_id: str = "MOCK_LOCATION", page_size: int = 50) -> None:
        self.location_id = location_id
        self.page_size = page_size
        self.orders: dict[str, dict[str, Any]] = {}
        self._links: dict[str, dict[str, Any]] = {}

    def close(self) -> None:
        pass

    def add_order(self, order: dict[str, Any]) -> dict[str, Any]:
        order = copy.deepcopy(order)
        order.setdefault("id", f"mock_order_{uuid4().hex[:12]}")
        order.setdefault("location_id", self.location_id)
        order.setdefault("state", "OPEN")
        order.setdefault("created_at", _now_iso())
        self.orders[order["id"]] = order
        return order

    def complete_order(self, order_id: str) -> dict[str, Any]:
        order = self.orders.get(order_id)
        if order is None:
            raise SquareAPIError(404, [{"detail": f"Order {order_id} not found"}])
        order["state"] = "COMPLETED"
        order["closed_at"] = _now_iso()
        return order

    def search_orders(
        self,
        query: dict[str, Any],
        *,
        location_ids: list[str] | None = None,
        sort: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        states = ((query.get("filter") or {}).get("state_filter") or {}).get("states")
        locations = set(location_ids or [self.location_id])

        matches = [
            copy.deepcopy(o)
            for o in self.orders.values()
            if o.get("location_id") in locations and (not states or o.get("state") in states)
        ]

        if sort:
            field = "closed_at" if sort.get("sort_field") == "CLOSED_AT" else "created_at"
            matches.sort(key=lambda o: o.get(field) or "", reverse=sort.get("sort_order") == "DESC")

        orders: list[dict[str, Any]] = []
        cursor = 0
        while True:
            page = matches[cursor : cursor + self.page_size]
            orders.extend(page)
            cursor += self.page_size
            if cursor >= len(matches):
                break
        return orders

    def get_order(self, order_id: str) -> dict[str, Any]:
        order = self.orders.get(order_id)
        if order is None:
            raise SquareAPIError(404, [{"detail": f"Order {order_id} not found"}])
        return copy.deepcopy(order)

    def list_locations(self) -> list[dict[str, Any]]:
        return [{"id": self.location_id, "name": "Mock Bakery", "status": "ACTIVE"}]

    def create_payment_link(
        self,
        *,
        order: dict[str, Any],
        idempotency_key: str,
        redirect_url: str,
    ) -> dict[str, Any]:
        if idempotency_key in self._links:
            return copy.deepcopy(self._links[idempotency_key])

        for item in order.get("line_items") or []:
            if int(item.get("quantity") or 0) <= 0:
                raise SquareAPIError(
                    400,
                    [{"code": "INVALID_VALUE", "detail": "Line item quantity must be positive"}],
                )

        stored = self.add_order(order)
        link_id = f"mock_link_{uuid4().hex[:12]}"
        payload = {
            "payment_link": {
                "id": link_id,
                "version": 1,
                "order_id": stored["id"],
                "url": f"https://square.link/u/{link_id}",
                "checkout_options": {"redirect_url": redirect_url},
                "created_at": stored["created_at"],
            },
            "related_resources": {"orders": [copy.deepcopy(stored)]},
        }
        self._links[idempotency_key] = payload
        return copy.deepcopy(payload)
