from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from services.api.app.services.square_base import SquareAPIError, SquareUnavailableError
from services.api.app.services.square_mock import SquareMockAdapter

PICKUP_DATE = "2025-12-18"


@pytest.fixture()
def square() -> SquareMockAdapter:
    return SquareMockAdapter(location_id="LOC_TEST")


@pytest.fixture()
def client(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, square: SquareMockAdapter
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "ricotta_checkout.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("RICOTTA_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("RICOTTA_DAILY_LIMIT", "250")
    monkeypatch.setenv("RICOTTA_TAX_PERCENT", "8.875")
    monkeypatch.delenv("RICOTTA_PICKUP_UTC_OFFSET", raising=False)

    from services.api.app.main import app
    from services.api.app.services.square_factory import square_adapter

    app.dependency_overrides[square_adapter] = lambda: square
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class _FailingSquare:
    vendor = "SQUARE_FAILING"
    location_id = "LOC_TEST"

    def __init__(self, exc: Exception) -> None:
        self._exc = exc
        self.calls = 0

    def create_payment_link(self, **kwargs: Any) -> dict:
        del kwargs
        self.calls += 1
        raise self._exc

    def close(self) -> None:
        pass


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "cartItems": [{"name": "Ricotta Donut", "quantity": 6, "unitAmountCents": 350}],
        "currency": "USD",
        "redirectUrlBase": "https://ricotta.example/",
        "pickupDate": PICKUP_DATE,
        "pickupTime": "10:00-12:00",
        "customerName": "Dana",
        "customerPhone": "555-0100",
        "customerEmail": "dana@example.com",
        "notes": "Extra sugar",
    }
    payload.update(overrides)
    return payload


def _donuts(quantity: Any) -> dict[str, Any]:
    return {"name": "Ricotta Donut", "quantity": quantity, "unitAmountCents": 350}


def _used(client: TestClient, day: str = PICKUP_DATE) -> int:
    resp = client.get("/availability", params={"date": day})
    assert resp.status_code == 200
    return resp.json()["used"]


def test_checkout_returns_payment_link_and_reserves(
    client: TestClient, square: SquareMockAdapter
) -> None:
    resp = client.post(
        "/checkout",
        json=_payload(cartItems=[_donuts(50)]),
    )
    assert resp.status_code == 200

    data = resp.json()
    assert data["paymentLinkUrl"].startswith("https://square.link/")
    assert data["orderId"] in square.orders
    assert data["reservationId"]
    assert data["remaining"] == 200
    assert _used(client) == 50


def test_checkout_builds_square_order(client: TestClient, square: SquareMockAdapter) -> None:
    resp = client.post(
        "/checkout",
        json=_payload(pickupTime=None, pickupWindow={"start": "11:00", "end": "13:00"}),
    )
    assert resp.status_code == 200
    data = resp.json()

    order = square.orders[data["orderId"]]
    assert order["location_id"] == "LOC_TEST"
    assert order["reference_id"] == data["reservationId"]

    donut, info = order["line_items"]
    assert donut == {
        "name": "Ricotta Donut",
        "quantity": "6",
        "base_price_money": {"amount": 350, "currency": "USD"},
    }
    assert info["name"] == "Pickup Details"
    assert info["base_price_money"]["amount"] == 0
    assert "Pickup: Thu Dec 18 2025 (11:00-13:00)" in info["note"]
    assert "Phone: 555-0100" in info["note"]

    assert order["taxes"][0]["percentage"] == "8.875"
    assert order["taxes"][0]["type"] == "ADDITIVE"

    pickup = order["fulfillments"][0]["pickup_details"]
    assert pickup["schedule_type"] == "SCHEDULED"
    assert pickup["pickup_at"] == "2025-12-18T11:00:00-05:00"
    assert pickup["recipient"]["display_name"] == "Dana"
    assert data["pickupAt"] == "2025-12-18T11:00:00-05:00"

    link = data["paymentLink"]["payment_link"]
    assert link["checkout_options"]["redirect_url"] == "https://ricotta.example/success.html"


def test_checkout_pickup_time_text_sets_start(
    client: TestClient, square: SquareMockAdapter
) -> None:
    resp = client.post("/checkout", json=_payload(pickupTime="2:30 PM"))
    assert resp.status_code == 200
    assert resp.json()["pickupAt"] == "2025-12-18T14:30:00-05:00"


def test_checkout_redirect_falls_back_to_request_host(client: TestClient) -> None:
    resp = client.post(
        "/checkout",
        json=_payload(redirectUrlBase=None),
        headers={"x-forwarded-proto": "https"},
    )
    assert resp.status_code == 200
    link = resp.json()["paymentLink"]["payment_link"]
    assert link["checkout_options"]["redirect_url"] == "https://testserver/success.html"


def test_checkout_rejects_when_five_left(client: TestClient) -> None:
    first = client.post(
        "/checkout",
        json=_payload(cartItems=[_donuts(245)]),
    )
    assert first.status_code == 200

    resp = client.post(
        "/checkout",
        json=_payload(cartItems=[_donuts(10)]),
    )
    assert resp.status_code == 409
    assert resp.json() == {"error": "Only 5 donuts left for this day.", "remaining": 5}
    assert _used(client) == 245


def test_checkout_rejects_fully_booked_day(client: TestClient) -> None:
    client.post(
        "/checkout",
        json=_payload(cartItems=[_donuts(250)]),
    )

    resp = client.post("/checkout", json=_payload())
    assert resp.status_code == 409
    assert resp.json()["error"] == "This day is fully booked."


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"cartItems": []}, "cartItems required"),
        ({"cartItems": None}, "cartItems required"),
        (
            {"cartItems": [{"name": "Ricotta Donut", "quantity": 0, "unitAmountCents": 350}]},
            "Quantity for Ricotta Donut must be a positive whole number",
        ),
        (
            {"cartItems": [{"name": "Ricotta Donut", "quantity": -2, "unitAmountCents": 350}]},
            "Quantity for Ricotta Donut must be a positive whole number",
        ),
        (
            {"cartItems": [{"name": "Ricotta Donut", "quantity": 2, "unitAmountCents": -1}]},
            "Price for Ricotta Donut must be a positive amount in cents",
        ),
        ({"pickupDate": None}, "pickupDate required"),
        ({"pickupDate": "  "}, "pickupDate required"),
        ({"pickupDate": "12/18/2025"}, "pickupDate must be a date in YYYY-MM-DD format"),
        ({"currency": "dollars"}, "currency must be a 3-letter code"),
    ],
)
def test_checkout_validation_happens_before_any_call(
    client: TestClient,
    overrides: dict[str, Any],
    message: str,
) -> None:
    from services.api.app.main import app
    from services.api.app.services.square_factory import square_adapter

    failing = _FailingSquare(SquareAPIError(500, [{"detail": "should not be called"}]))
    app.dependency_overrides[square_adapter] = lambda: failing

    resp = client.post("/checkout", json=_payload(**overrides))

    assert resp.status_code == 400
    assert resp.json() == {"error": message}
    assert failing.calls == 0
    assert _used(client) == 0


def test_checkout_malformed_types_are_400(client: TestClient) -> None:
    resp = client.post(
        "/checkout",
        json=_payload(cartItems=[_donuts("lots")]),
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request body"


def test_provider_error_releases_reservation(client: TestClient) -> None:
    from services.api.app.main import app
    from services.api.app.services.square_factory import square_adapter

    error = SquareAPIError(400, [{"code": "INVALID_VALUE", "detail": "Bad price"}])
    failing = _FailingSquare(error)
    app.dependency_overrides[square_adapter] = lambda: failing

    resp = client.post("/checkout", json=_payload())

    assert resp.status_code == 400
    assert resp.json() == {"error": "Bad price"}
    assert failing.calls == 1
    assert _used(client) == 0


def test_provider_timeout_is_retryable_and_releases(client: TestClient) -> None:
    from services.api.app.main import app
    from services.api.app.services.square_factory import square_adapter

    failing = _FailingSquare(SquareUnavailableError("/v2/online-checkout/payment-links", "timeout"))
    app.dependency_overrides[square_adapter] = lambda: failing

    resp = client.post("/checkout", json=_payload())

    assert resp.status_code == 503
    assert "temporarily unavailable" in resp.json()["error"]
    assert _used(client) == 0


def test_retry_with_same_idempotency_key_reserves_once(
    client: TestClient, square: SquareMockAdapter
) -> None:
    first = client.post("/checkout", json=_payload(idempotencyKey="cart-42"))
    again = client.post("/checkout", json=_payload(idempotencyKey="cart-42"))

    assert first.status_code == 200
    assert again.status_code == 200
    assert again.json()["reservationId"] == first.json()["reservationId"]
    assert again.json()["paymentLinkUrl"] == first.json()["paymentLinkUrl"]
    assert len(square.orders) == 1
    assert _used(client) == 6


def test_availability_rejects_bad_date(client: TestClient) -> None:
    resp = client.get("/availability", params={"date": "tomorrow"})
    assert resp.status_code == 400


def test_availability_reports_limit(client: TestClient) -> None:
    resp = client.get("/availability", params={"date": PICKUP_DATE})
    assert resp.status_code == 200
    assert resp.json() == {"date": PICKUP_DATE, "used": 0, "remaining": 250, "limit": 250}


class _TimesOutOnce:
    vendor = "SQUARE_TIMES_OUT_ONCE"

    def __init__(self, square: SquareMockAdapter) -> None:
        self._square = square
        self.location_id = square.location_id
        self.orders: list[dict[str, Any]] = []

    def create_payment_link(self, **kwargs: Any) -> dict:
        self.orders.append(kwargs["order"])
        if len(self.orders) == 1:
            raise SquareUnavailableError("/v2/online-checkout/payment-links", "timeout")
        return self._square.create_payment_link(**kwargs)

    def close(self) -> None:
        pass


def test_retry_after_timeout_reuses_idempotency_key(
    client: TestClient, square: SquareMockAdapter
) -> None:
    from services.api.app.main import app
    from services.api.app.services.square_factory import square_adapter

    flaky = _TimesOutOnce(square)
    app.dependency_overrides[square_adapter] = lambda: flaky

    first = client.post("/checkout", json=_payload(idempotencyKey="k-1"))
    assert first.status_code == 503
    assert _used(client) == 0

    retry = client.post("/checkout", json=_payload(idempotencyKey="k-1"))

    assert retry.status_code == 200
    assert retry.json()["remaining"] == 244
    assert _used(client) == 6
    # Same reservation id, so Square sees the identical order body both times.
    assert flaky.orders[0] == flaky.orders[1]
    assert flaky.orders[1]["reference_id"] == retry.json()["reservationId"]


def test_retry_after_timeout_still_respects_the_limit(
    client: TestClient, square: SquareMockAdapter
) -> None:
    from services.api.app.main import app
    from services.api.app.services.square_factory import square_adapter

    flaky = _TimesOutOnce(square)
    app.dependency_overrides[square_adapter] = lambda: flaky
    assert client.post("/checkout", json=_payload(idempotencyKey="k-2")).status_code == 503

    app.dependency_overrides[square_adapter] = lambda: square
    client.post("/checkout", json=_payload(cartItems=[_donuts(248)]))

    app.dependency_overrides[square_adapter] = lambda: flaky
    retry = client.post("/checkout", json=_payload(idempotencyKey="k-2"))

    assert retry.status_code == 409
    assert retry.json() == {"error": "Only 2 donuts left for this day.", "remaining": 2}
    assert _used(client) == 248


def test_oversized_quantity_is_rejected_without_touching_the_store(client: TestClient) -> None:
    resp = client.post("/checkout", json=_payload(cartItems=[_donuts(2**63)]))

    assert resp.status_code == 409
    assert resp.json() == {"error": "Only 250 donuts left for this day.", "remaining": 250}
    assert _used(client) == 0

    # The session is still usable afterwards.
    ok = client.post("/checkout", json=_payload())
    assert ok.status_code == 200
