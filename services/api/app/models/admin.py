from __future__ import annotations

from services.api.app.models.checkout import CamelModel


class DaySummaryOut(CamelModel):
    date: str
    used: int
    remaining: int

    # Units held in the inventory counter (pending reservations plus counted payments).
    committed: int


class AdminOrderOut(CamelModel):
    id: str
    pickup_date: str
    pickup_time: str
    units: int
    total: str
    created_at: str


class AdminOrdersResponse(CamelModel):
    days_summary: list[DaySummaryOut]
    orders: list[AdminOrderOut]


class LocationOut(CamelModel):
    id: str
    name: str = ""
    status: str = ""
