"""Daily inventory counter.

The database row per pickup date is the only source of truth for committed units. Every
mutation is a single conditional UPDATE (or a unique-key insert), so concurrent checkouts for
the same date cannot push the total past the limit between a read and a write.

`used_units` counts pending reservations plus paid units. A reservation is held while the
customer is on the payment page; it is confirmed by the payment webhook, released when the
payment link could not be created, or expired after the reservation TTL.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.config import Settings
from services.api.app.db.models import DailyInventory, PaymentRecord, Reservation, utcnow
from services.api.app.services.events import record_event
from sqlalchemy import Table, case, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_INVENTORY: Table = DailyInventory.__table__
_RESERVATIONS: Table = Reservation.__table__
_PAYMENTS: Table = PaymentRecord.__table__


class InventoryError(Exception):
    """Base class for inventory counter errors."""


class InventoryExceeded(InventoryError):
    def __init__(self, pickup_date: date, requested: int, remaining: int) -> None:
        super().__init__(
            f"Requested {requested} units for {pickup_date.isoformat()} but only {remaining} remain"
        )
        self.pickup_date = pickup_date
        self.requested = requested
        self.remaining = remaining

    @property
    def user_message(self) -> str:
        if self.remaining > 0:
            return f"Only {self.remaining} donuts left for this day."
        return "This day is fully booked."


class ReservationClosedError(InventoryError):
    def __init__(self, idempotency_key: str, status: str) -> None:
        super().__init__(
            f"Checkout {idempotency_key!r} is already {status.lower()}. Start a new checkout."
        )
        self.idempotency_key = idempotency_key
        self.status = status


class PersistenceError(InventoryError):
    """The inventory store could not be read or written."""


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"


_REOPENABLE = {ReservationStatus.RELEASED.value, ReservationStatus.EXPIRED.value}


@dataclass(frozen=True, slots=True)
class ReserveResult:
    ok: bool
    remaining: int
    reservation_id: str
    expires_at: datetime
    reused: bool = False


def _insert_ignore(db: Session, table: Table, values: dict[str, Any], key: str) -> int:
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite.insert(table)
    elif dialect == "postgresql":
        stmt = postgresql.insert(table)
    else:
        raise PersistenceError(f"Unsupported database dialect for inventory store: {dialect}")

    stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=[key])
    return db.execute(stmt).rowcount


class InventoryCounter:
    def __init__(
        self,
        db: Session,
        *,
        daily_limit: int,
        reservation_ttl: timedelta = timedelta(minutes=30),
    ) -> None:
        self._db = db
        self.daily_limit = daily_limit
        self.reservation_ttl = reservation_ttl

    @classmethod
    def from_settings(cls, db: Session, settings: Settings) -> "InventoryCounter":
        return cls(
            db,
            daily_limit=settings.daily_limit,
            reservation_ttl=timedelta(minutes=settings.reservation_ttl_minutes),
        )

    @contextmanager
    def _transaction(self, action: str, **context: object) -> Iterator[None]:
        try:
            yield
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error("Inventory store failed during %s %s: %s", action, context, e)
            raise PersistenceError(f"Inventory store failed during {action}") from e
        except Exception:
            self._db.rollback()
            raise

    # --- reads

    def get_used(self, pickup_date: date) -> int:
        try:
            return self._used(pickup_date)
        except SQLAlchemyError as e:
            logger.error("Inventory read failed for %s: %s", pickup_date, e)
            raise PersistenceError("Inventory store unavailable") from e

    def remaining(self, pickup_date: date) -> int:
        return max(self.daily_limit - self.get_used(pickup_date), 0)

    def _used(self, pickup_date: date) -> int:
        used = self._db.scalar(
            select(_INVENTORY.c.used_units).where(_INVENTORY.c.date == pickup_date)
        )
        return int(used or 0)

    # --- writes

    def reserve(
        self,
        pickup_date: date,
        units: int,
        *,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> ReserveResult:
        """Hold `units` for `pickup_date` until the payment webhook or the TTL settles them.

        A repeated idempotency key returns its pending hold. A key whose hold was released or
        expired (for example after Square timed out) is reopened under the same reservation id,
        so the retried Square order carries the same `reference_id`.
        """

        if units <= 0:
            raise ValueError("units must be positive")

        now = now or utcnow()
        self.release_expired(now)

        with self._transaction("reserve", pickup_date=pickup_date, units=units):
            existing = None
            if idempotency_key:
                existing = self._db.execute(
                    select(_RESERVATIONS).where(_RESERVATIONS.c.idempotency_key == idempotency_key)
                ).first()

            if existing is not None and existing.status == ReservationStatus.PENDING.value:
                return ReserveResult(
                    ok=True,
                    remaining=max(self.daily_limit - self._used(existing.pickup_date), 0),
                    reservation_id=existing.id,
                    expires_at=existing.expires_at,
                    reused=True,
                )

            if existing is not None and existing.status not in _REOPENABLE:
                raise ReservationClosedError(idempotency_key or "", existing.status)

            self._take_units(pickup_date, units, now)

            expires_at = now + self.reservation_ttl
            if existing is not None:
                reservation_id = existing.id
                reopened = self._db.execute(
                    update(_RESERVATIONS)
                    .where(
                        _RESERVATIONS.c.id == reservation_id,
                        _RESERVATIONS.c.status == existing.status,
                    )
                    .values(
                        status=ReservationStatus.PENDING.value,
                        pickup_date=pickup_date,
                        units=units,
                        expires_at=expires_at,
                    )
                ).rowcount
                if not reopened:
                    raise ReservationClosedError(idempotency_key or "", "changed")
            else:
                reservation_id = uuid4().hex
                self._db.execute(
                    _RESERVATIONS.insert().values(
                        id=reservation_id,
                        idempotency_key=idempotency_key or uuid4().hex,
                        pickup_date=pickup_date,
                        units=units,
                        status=ReservationStatus.PENDING.value,
                        created_at=now,
                        expires_at=expires_at,
                    )
                )

            record_event(
                self._db,
                entity_type=EntityTypeV1.RESERVATION,
                entity_id=reservation_id,
                event_type=EventTypeV1.RESERVATION_CREATED,
                payload={
                    "pickup_date": pickup_date.isoformat(),
                    "units": units,
                    "reopened": existing is not None,
                },
            )
            result = ReserveResult(
                ok=True,
                remaining=max(self.daily_limit - self._used(pickup_date), 0),
                reservation_id=reservation_id,
                expires_at=expires_at,
            )

        logger.info(
            "Reserved %s units for %s (reservation %s, %s remaining)",
            units,
            pickup_date,
            result.reservation_id,
            result.remaining,
        )
        return result

    def attach_order(
        self, reservation_id: str, *, order_id: str | None, payment_link_id: str | None
    ) -> None:
        with self._transaction("attach_order", reservation_id=reservation_id):
            self._db.execute(
                update(_RESERVATIONS)
                .where(_RESERVATIONS.c.id == reservation_id)
                .values(order_id=order_id, payment_link_id=payment_link_id)
            )

    def release(
        self,
        reservation_id: str,
        *,
        status: ReservationStatus = ReservationStatus.RELEASED,
    ) -> bool:
        with self._transaction("release", reservation_id=reservation_id):
            released = self._release_pending(reservation_id, status)

        if released:
            logger.info("Reservation %s %s", reservation_id, status.value.lower())
        return released

    def release_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        with self._transaction("release_expired"):
            expired_ids = self._db.scalars(
                select(_RESERVATIONS.c.id).where(
                    _RESERVATIONS.c.status == ReservationStatus.PENDING.value,
                    _RESERVATIONS.c.expires_at <= now,
                )
            ).all()
            count = sum(
                1
                for reservation_id in expired_ids
                if self._release_pending(reservation_id, ReservationStatus.EXPIRED)
            )

        if count:
            logger.info("Expired %s abandoned reservations", count)
        return count

    def confirm_payment(
        self,
        payment_id: str,
        pickup_date: date,
        units: int,
        *,
        reservation_id: str | None = None,
        order_id: str | None = None,
    ) -> bool:
        """Count a completed payment exactly once.

        Returns False when the payment id was already counted. A still-pending reservation
        for the order is swapped for the paid units; paid units are added even past the limit
        since the money has already been taken.
        """

        with self._transaction("confirm_payment", payment_id=payment_id, pickup_date=pickup_date):
            inserted = _insert_ignore(
                self._db,
                _PAYMENTS,
                {
                    "payment_id": payment_id,
                    "pickup_date": pickup_date,
                    "units_counted": units,
                    "order_id": order_id,
                    "created_at": utcnow(),
                },
                "payment_id",
            )
            if not inserted:
                logger.info("Payment %s already counted, skipping", payment_id)
                return False

            held = self._claim_reservation(payment_id, reservation_id, order_id)

            self._ensure_row(pickup_date)
            self._db.execute(
                update(_INVENTORY)
                .where(_INVENTORY.c.date == pickup_date)
                .values(used_units=_INVENTORY.c.used_units + units, updated_at=utcnow())
            )
            record_event(
                self._db,
                entity_type=EntityTypeV1.PAYMENT,
                entity_id=payment_id,
                event_type=EventTypeV1.PAYMENT_COUNTED,
                payload={
                    "pickup_date": pickup_date.isoformat(),
                    "units": units,
                    "order_id": order_id,
                    "reservation_id": held,
                },
            )
            used = self._used(pickup_date)

        if used > self.daily_limit:
            logger.warning(
                "Paid orders put %s over the daily limit: %s/%s",
                pickup_date,
                used,
                self.daily_limit,
            )
        logger.info("Counted %s units for %s from payment %s", units, pickup_date, payment_id)
        return True

    # --- helpers; callers own the transaction

    def _take_units(self, pickup_date: date, units: int, now: datetime) -> None:
        # Checked before any SQL so oversized ints never reach the driver.
        if units > self.daily_limit:
            remaining = max(self.daily_limit - self._used(pickup_date), 0)
            raise InventoryExceeded(pickup_date, units, remaining)

        self._ensure_row(pickup_date)
        reserved = self._db.execute(
            update(_INVENTORY)
            .where(
                _INVENTORY.c.date == pickup_date,
                _INVENTORY.c.used_units + units <= self.daily_limit,
            )
            .values(used_units=_INVENTORY.c.used_units + units, updated_at=now)
        ).rowcount

        if not reserved:
            remaining = max(self.daily_limit - self._used(pickup_date), 0)
            raise InventoryExceeded(pickup_date, units, remaining)

    def _ensure_row(self, pickup_date: date) -> None:
        _insert_ignore(
            self._db,
            _INVENTORY,
            {"date": pickup_date, "used_units": 0, "updated_at": utcnow()},
            "date",
        )

    def _decrement(self, pickup_date: date, units: int) -> None:
        self._db.execute(
            update(_INVENTORY)
            .where(_INVENTORY.c.date == pickup_date)
            .values(
                used_units=case(
                    (_INVENTORY.c.used_units >= units, _INVENTORY.c.used_units - units),
                    else_=0,
                ),
                updated_at=utcnow(),
            )
        )

    def _release_pending(self, reservation_id: str, status: ReservationStatus) -> bool:
        row = self._db.execute(
            select(_RESERVATIONS.c.pickup_date, _RESERVATIONS.c.units).where(
                _RESERVATIONS.c.id == reservation_id
            )
        ).first()
        if row is None:
            return False

        changed = self._db.execute(
            update(_RESERVATIONS)
            .where(
                _RESERVATIONS.c.id == reservation_id,
                _RESERVATIONS.c.status == ReservationStatus.PENDING.value,
            )
            .values(status=status.value)
        ).rowcount
        if not changed:
            return False

        self._decrement(row.pickup_date, row.units)
        record_event(
            self._db,
            entity_type=EntityTypeV1.RESERVATION,
            entity_id=reservation_id,
            event_type=(
                EventTypeV1.RESERVATION_EXPIRED
                if status == ReservationStatus.EXPIRED
                else EventTypeV1.RESERVATION_RELEASED
            ),
            payload={"pickup_date": row.pickup_date.isoformat(), "units": row.units},
        )
        return True

    def _claim_reservation(
        self,
        payment_id: str,
        reservation_id: str | None,
        order_id: str | None,
    ) -> str | None:
        query = select(_RESERVATIONS.c.id, _RESERVATIONS.c.pickup_date, _RESERVATIONS.c.units)
        if reservation_id:
            query = query.where(_RESERVATIONS.c.id == reservation_id)
        elif order_id:
            query = query.where(_RESERVATIONS.c.order_id == order_id)
        else:
            return None

        pending = _RESERVATIONS.c.status == ReservationStatus.PENDING.value
        row = self._db.execute(query.where(pending)).first()
        if row is None:
            return None

        values: dict[str, Any] = {
            "status": ReservationStatus.CONFIRMED.value,
            "payment_id": payment_id,
        }
        if order_id:
            values["order_id"] = order_id

        changed = self._db.execute(
            update(_RESERVATIONS)
            .where(
                _RESERVATIONS.c.id == row.id,
                _RESERVATIONS.c.status == ReservationStatus.PENDING.value,
            )
            .values(**values)
        ).rowcount
        if not changed:
            return None

        # The held units are replaced by the paid units counted by the caller.
        self._decrement(row.pickup_date, row.units)
        record_event(
            self._db,
            entity_type=EntityTypeV1.RESERVATION,
            entity_id=row.id,
            event_type=EventTypeV1.RESERVATION_CONFIRMED,
            payload={"payment_id": payment_id, "held_units": row.units},
        )
        return row.id
