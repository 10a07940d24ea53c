import pytest


@pytest.mark.asyncio
async def test_extend_horizon_requires_secret(client, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "INTERNAL_SECRET", "secret")

    missing = await client.post("/internal/scheduled/extend-horizon")
    wrong = await client.post("/internal/scheduled/extend-horizon", headers={"X-Internal-Secret": "nope"})

    assert missing.status_code == 422
    assert wrong.status_code == 403


@pytest.mark.asyncio
async def test_extend_horizon_not_configured(client, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "INTERNAL_SECRET", "")

    response = await client.post("/internal/scheduled/extend-horizon", headers={"X-Internal-Secret": "x"})
    assert response.status_code == 501


@pytest.mark.asyncio
async def test_extend_horizon_materializes_active_series(client, monkeypatch, make_series):
    from app.core.config import settings

    monkeypatch.setattr(settings, "INTERNAL_SECRET", "secret")
    make_series(rrule="FREQ=DAILY")
    make_series(rrule="FREQ=NEVER")

    response = await client.post(
        "/internal/scheduled/extend-horizon",
        headers={"X-Internal-Secret": "secret"},
        json={"horizonDays": 7},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["series_processed"] == 1
    assert data["errors"] == 1
    assert data["occurrences_created"] > 0
