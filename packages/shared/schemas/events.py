"""Shared event schema (v1).

The backend stores an append-only log of inventory events. The admin page reads these
events to explain how a day's committed total was reached.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EntityTypeV1(str, Enum):
    RESERVATION = "Reservation"
    PAYMENT = "Payment"


class EventTypeV1(str, Enum):
    RESERVATION_CREATED = "RESERVATION_CREATED"
    RESERVATION_RELEASED = "RESERVATION_RELEASED"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
    RESERVATION_CONFIRMED = "RESERVATION_CONFIRMED"
    PAYMENT_COUNTED = "PAYMENT_COUNTED"


class EventV1(BaseModel):
    id: str

    entity_type: EntityTypeV1
    entity_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
