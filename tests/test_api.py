import pytest
from fastapi.testclient import TestClient

from conftest import make_candles
from main import app


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def _rows(n, price=100.0):
    return [list(c) for c in make_candles([price] * n)]


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_strategies(client):
    data = client.get("/api/strategies").json()
    assert set(data) == {"rsi_ema", "scalping"}
    assert data["scalping"]["min_history"] == 50


def test_backtest_with_inline_candles_is_stored(client):
    resp = client.post("/api/backtest", json={
        "strategy": "rsi_ema", "period_days": 3, "initial_balance": 500, "candles": _rows(72),
    })
    assert resp.status_code == 200
    report = resp.json()
    assert report["strategy"] == "rsi_ema"
    assert report["config"]["initial_balance"] == 500
    assert report["statistics"]["total_trades"] == 0
    assert report["performance"]["final_balance"] == 500

    run_id = report["id"]
    listed = client.get("/api/backtests").json()
    assert run_id in [r["id"] for r in listed]

    stored = client.get(f"/api/backtests/{run_id}").json()
    assert stored["strategy"] == "rsi_ema"
    assert stored["period_days"] == 3
    assert stored["report"]["termination"]["candles_processed"] == 72 - 31


def test_short_candle_history_still_reports(client):
    resp = client.post("/api/backtest", json={"strategy": "scalping", "candles": _rows(10)})
    assert resp.status_code == 200
    assert resp.json()["termination"]["candles_processed"] == 0


@pytest.mark.parametrize("payload", [
    {"strategy": "martingale"},
    {"strategy": "rsi_ema", "period_days": 0},
    {"strategy": "rsi_ema", "period_days": 400},
    {"strategy": "rsi_ema", "initial_balance": 5},
    {"strategy": "rsi_ema", "leverage": 0, "candles": [[0, 1, 1, 1, 1, 1]]},
])
def test_invalid_requests_are_rejected(client, payload):
    assert client.post("/api/backtest", json=payload).status_code == 400


def test_empty_inline_candles_rejected(client):
    resp = client.post("/api/backtest", json={"strategy": "rsi_ema", "candles": []})
    assert resp.status_code == 400


def test_missing_run_is_404(client):
    assert client.get("/api/backtests/999999").status_code == 404
