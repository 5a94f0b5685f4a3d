from __future__ import annotations

import logging
from typing import Any

import httpx
from services.api.app.config import Settings
from services.api.app.services.square_base import (
    SQUARE_API_VERSION,
    SQUARE_HOSTS,
    SquareAPIError,
    SquareNotConfiguredError,
    SquareResponse,
    SquareUnavailableError,
)

logger = logging.getLogger(__name__)


class SquareClient:
    """Square REST client.

    Calls are never retried here. Error payloads are raised as SquareAPIError untouched;
    timeouts and connection failures are raised as SquareUnavailableError so handlers can
    answer with a retryable status instead of guessing.

    Env vars:
    - RICOTTA_SQUARE_ADAPTER=live
    - SQUARE_ACCESS_TOKEN (required)
    - SQUARE_LOCATION_ID
    - SQUARE_ENV (production | sandbox, default: production)
    - RICOTTA_SQUARE_TIMEOUT_SECONDS (default: 10)
    """

    vendor = "SQUARE"

    def __init__(
        self,
        *,
        access_token: str,
        location_id: str,
        environment: str = "production",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not access_token:
            raise SquareNotConfiguredError("SQUARE_ACCESS_TOKEN")
        if environment not in SQUARE_HOSTS:
            raise ValueError(f"Unknown SQUARE_ENV={environment!r}. Expected production or sandbox.")

        self.location_id = location_id
        self._http = httpx.Client(
            base_url=SQUARE_HOSTS[environment],
            headers={
                "Square-Version": SQUARE_API_VERSION,
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SquareClient":
        return cls(
            access_token=settings.square_access_token,
            location_id=settings.square_location_id,
            environment=settings.square_env,
            timeout=settings.square_timeout_seconds,
        )

    def close(self) -> None:
        self._http.close()

    def request(self, method: str, path: str, body: dict[str, Any] | None = None) -> SquareResponse:
        try:
            resp = self._http.request(method, path, json=body)
        except httpx.TimeoutException as e:
            logger.warning("Square %s %s timed out", method, path)
            raise SquareUnavailableError(path, "timeout") from e
        except httpx.TransportError as e:
            logger.warning("Square %s %s failed: %s", method, path, e)
            raise SquareUnavailableError(path, str(e) or type(e).__name__) from e

        try:
            parsed = resp.json()
        except ValueError:
            parsed = {"raw": resp.text}

        return SquareResponse(status_code=resp.status_code, body=parsed)

    def _call(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        resp = self.request(method, path, body)
        payload = resp.body if isinstance(resp.body, dict) else {"raw": resp.body}

        errors = payload.get("errors")
        if resp.status_code >= 400 or errors:
            if not isinstance(errors, list):
                errors = [{"detail": payload.get("raw") or f"HTTP {resp.status_code}"}]
            logger.error("Square %s %s returned %s: %s", method, path, resp.status_code, errors)
            raise SquareAPIError(resp.status_code, errors, path=path)

        return payload

    def search_orders(
        self,
        query: dict[str, Any],
        *,
        location_ids: list[str] | None = None,
        sort: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """Search orders and follow the cursor until Square stops returning one."""

        orders: list[dict[str, Any]] = []
        cursor: str | None = None
        pages = 0

        while True:
            body: dict[str, Any] = {
                "location_ids": location_ids or [self.location_id],
                "query": {**query, "sort": sort} if sort else query,
            }
            if cursor:
                body["cursor"] = cursor

            payload = self._call("POST", "/v2/orders/search", body)
            orders.extend(payload.get("orders") or [])
            pages += 1

            cursor = payload.get("cursor")
            if not cursor:
                break

        logger.debug("Square order search returned %s orders over %s pages", len(orders), pages)
        return orders

    def get_order(self, order_id: str) -> dict[str, Any]:
        path = f"/v2/orders/{order_id}"
        payload = self._call("GET", path)
        order = payload.get("order")
        if not isinstance(order, dict):
            raise SquareAPIError(404, [{"detail": f"Order {order_id} not found"}], path=path)
        return order

    def list_locations(self) -> list[dict[str, Any]]:
        return self._call("GET", "/v2/locations").get("locations") or []

    def create_payment_link(
        self,
        *,
        order: dict[str, Any],
        idempotency_key: str,
        redirect_url: str,
    ) -> dict[str, Any]:
        body = {
            "idempotency_key": idempotency_key,
            "order": order,
            "checkout_options": {"redirect_url": redirect_url},
        }
        return self._call("POST", "/v2/online-checkout/payment-links", body)
