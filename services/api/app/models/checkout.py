from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # The storefront speaks camelCase JSON.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartItemIn(CamelModel):
    name: str | None = None
    quantity: int | None = None
    unit_amount_cents: int | None = None


class PickupWindowIn(CamelModel):
    start: str | None = Field(default=None, validation_alias=AliasChoices("start", "from"))
    end: str | None = Field(default=None, validation_alias=AliasChoices("end", "to"))


class CheckoutRequest(CamelModel):
    """Checkout body as sent by the storefront.

    Fields are deliberately loose here; business validation happens in the checkout service
    so each problem gets its own 400 message.
    """

    cart_items: list[CartItemIn] | None = None
    currency: str = "USD"
    redirect_url_base: str | None = None

    pickup_date: str | None = None
    pickup_time: str | None = None
    pickup_window: PickupWindowIn | None = None

    customer_name: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    notes: str | None = None

    idempotency_key: str | None = None


class CheckoutResponse(CamelModel):
    payment_link_url: str
    payment_link_id: str | None = None
    order_id: str | None = None
    reservation_id: str
    pickup_at: str
    remaining: int
    expires_at: str
    payment_link: dict[str, Any] = Field(default_factory=dict)


class AvailabilityResponse(CamelModel):
    date: str
    used: int
    remaining: int
    limit: int
