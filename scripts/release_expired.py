from __future__ import annotations

import argparse
from datetime import date

from services.api.app.config import get_settings
from services.api.app.db.database import db_session
from services.api.app.db.init_db import init_db
from services.api.app.logging_config import configure_logging
from services.api.app.services.inventory import InventoryCounter


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Give back units held by checkouts that were never paid"
    )
    parser.add_argument(
        "--show",
        action="append",
        default=[],
        metavar="YYYY-MM-DD",
        help="Print the committed total for a pickup date afterwards (repeatable)",
    )
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    init_db()

    db = db_session()
    try:
        counter = InventoryCounter.from_settings(db, settings)
        released = counter.release_expired()
        print(f"Released {released} expired reservations")

        for raw in args.show:
            day = date.fromisoformat(raw)
            used = counter.get_used(day)
            print(f"{day.isoformat()}: {used}/{counter.daily_limit} committed")
    finally:
        db.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
