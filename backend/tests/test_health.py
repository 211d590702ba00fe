import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import main  # noqa: E402


@pytest.mark.asyncio
async def test_health_is_ok_when_configured(monkeypatch):
    service = SimpleNamespace(
        get_stats=AsyncMock(return_value={"configured": True, "missing_settings": []})
    )
    monkeypatch.setattr(main, "leaderboard_service", service)

    payload = await main.health_check()

    assert payload["status"] == "ok"
    assert payload["missing_settings"] == []
    assert "timestamp" in payload


@pytest.mark.asyncio
async def test_health_is_degraded_without_upstream_settings(monkeypatch):
    service = SimpleNamespace(
        get_stats=AsyncMock(
            return_value={"configured": False, "missing_settings": ["NEYNAR_API_KEY"]}
        )
    )
    monkeypatch.setattr(main, "leaderboard_service", service)

    payload = await main.health_check()

    assert payload["status"] == "degraded"
    assert payload["missing_settings"] == ["NEYNAR_API_KEY"]


def test_routes_are_mounted_under_api_prefix():
    paths = {route.path for route in main.app.routes}

    assert "/api/leaderboard" in paths
    assert "/api/leaderboard/user/{address}" in paths
    assert "/api/maintenance/leaderboard/flush" in paths
    assert "/health" in paths
