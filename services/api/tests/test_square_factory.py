import pytest
from services.api.app.services.square_base import SquareNotConfiguredError
from services.api.app.services.square_factory import get_square_adapter


def test_get_square_adapter_defaults_to_mock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RICOTTA_SQUARE_ADAPTER", raising=False)
    adapter = get_square_adapter()
    assert adapter.vendor == "SQUARE_MOCK"


def test_get_square_adapter_rejects_unknown(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RICOTTA_SQUARE_ADAPTER", "nope")
    with pytest.raises(ValueError, match="Unknown RICOTTA_SQUARE_ADAPTER"):
        get_square_adapter()


def test_live_adapter_requires_access_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RICOTTA_SQUARE_ADAPTER", "live")
    monkeypatch.delenv("SQUARE_ACCESS_TOKEN", raising=False)
    with pytest.raises(SquareNotConfiguredError):
        get_square_adapter()


def test_live_adapter_uses_configured_location(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RICOTTA_SQUARE_ADAPTER", "live")
    monkeypatch.setenv("SQUARE_ACCESS_TOKEN", "sq-token")
    monkeypatch.setenv("SQUARE_LOCATION_ID", "LOC_LIVE")
    monkeypatch.setenv("SQUARE_ENV", "sandbox")

    adapter = get_square_adapter()
    try:
        assert adapter.vendor == "SQUARE"
        assert adapter.location_id == "LOC_LIVE"
    finally:
        adapter.close()
