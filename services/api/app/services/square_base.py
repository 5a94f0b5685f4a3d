from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

# Pinned; bump deliberately after checking the Square changelog.
SQUARE_API_VERSION = "2025-01-15"

SQUARE_HOSTS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}


class SquareAdapterError(Exception):
    """Base class for Square adapter errors."""


class SquareNotConfiguredError(SquareAdapterError):
    def __init__(self, missing: str) -> None:
        super().__init__(f"Square is not configured: {missing} is required")
        self.missing = missing


class SquareAPIError(SquareAdapterError):
    """Square answered with an error payload. The payload is kept untouched."""

    def __init__(self, status_code: int, errors: list[dict[str, Any]], *, path: str = "") -> None:
        self.status_code = status_code
        self.errors = errors
        self.path = path
        super().__init__(f"Square HTTP {status_code} on {path or '?'}: {self.detail}")

    @property
    def detail(self) -> str:
        for err in self.errors:
            detail = err.get("detail") if isinstance(err, dict) else None
            if detail:
                return str(detail)
        return "Square request failed"

    @property
    def is_transient(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429


class SquareUnavailableError(SquareAdapterError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Square is temporarily unavailable ({path}): {reason}")
        self.path = path
        self.reason = reason


@dataclass(frozen=True, slots=True)
class SquareResponse:
    status_code: int
    body: Any


class SquareAdapter(Protocol):
    vendor: str
    location_id: str

    def search_orders(
        self,
        query: dict[str, Any],
        *,
        location_ids: list[str] | None = None,
        sort: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]: ...

    def get_order(self, order_id: str) -> dict[str, Any]: ...

    def list_locations(self) -> list[dict[str, Any]]: ...

    def create_payment_link(
        self,
        *,
        order: dict[str, Any],
        idempotency_key: str,
        redirect_url: str,
    ) -> dict[str, Any]: ...

    def close(self) -> None: ...
