from __future__ import annotations

import logging
from collections.abc import Generator

from fastapi import HTTPException
from services.api.app.config import get_settings
from services.api.app.services.square_base import SquareAdapter, SquareNotConfiguredError
from services.api.app.services.square_mock import SquareMockAdapter

logger = logging.getLogger(__name__)

_MOCK_ADAPTER: SquareMockAdapter | None = None


def get_square_adapter() -> SquareAdapter:
    """Select an adapter based on env vars.

    Defaults to the mock adapter so tests and local dev never reach Square unless explicitly
    configured otherwise. The mock is shared across requests so a checkout can be followed by
    a webhook for the same order.
    """

    global _MOCK_ADAPTER

    settings = get_settings()
    mode = settings.square_adapter

    if mode == "mock":
        if _MOCK_ADAPTER is None:
            _MOCK_ADAPTER = SquareMockAdapter(location_id=settings.square_location_id)
        return _MOCK_ADAPTER

    if mode == "live":
        from services.api.app.services.square_client import SquareClient

        return SquareClient.from_settings(settings)

    raise ValueError(f"Unknown RICOTTA_SQUARE_ADAPTER={mode!r}. Expected mock or live.")


def square_adapter() -> Generator[SquareAdapter, None, None]:
    """FastAPI dependency that closes the adapter after the request."""

    try:
        adapter = get_square_adapter()
    except (ValueError, SquareNotConfiguredError) as e:
        logger.error("Square adapter misconfigured: %s", e)
        raise HTTPException(status_code=500, detail=str(e)) from e

    try:
        yield adapter
    finally:
        adapter.close()
