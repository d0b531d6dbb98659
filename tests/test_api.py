"""Tests for the control API — routers over a local replay session."""

import pytest
from fastapi.testclient import TestClient

from weaver.api.routers import configure_routers
from weaver.indicators.catalog import IndicatorCatalog, MemoryIndicatorStore
from weaver.main import app
from weaver.market.models import Candle
from weaver.market.synthetic import make_rng
from weaver.replay.controller import ReplayController
from weaver.session import ReplaySession
from weaver.trading.engine import TradingEngine

client = TestClient(app)


# ── Helpers ──────────────────────────────────────────────────────────────


def _candles(n: int = 50) -> list[Candle]:
    return [
        Candle(1_704_067_200 + i * 3600, 1.1, 1.1012, 1.0988, 1.1 + (i % 4) * 0.0003, 100.0)
        for i in range(n)
    ]


def _configure() -> ReplaySession:
    """Inject a fresh session with local history loaded."""
    session = ReplaySession(
        controller=ReplayController(_candles(), rng=make_rng(5)),
        engine=TradingEngine(),
        catalog=IndicatorCatalog(MemoryIndicatorStore()),
    )
    configure_routers(session)
    return session


# ── Tests ────────────────────────────────────────────────────────────────


class TestHealth:
    def test_health(self):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestState:
    def test_no_session(self):
        configure_routers(None)
        assert "error" in client.get("/state").json()

    def test_state_schema(self):
        _configure()
        data = client.get("/state").json()
        assert data["pair"] == "EUR/USD"
        assert data["replay"]["mode"] == "idle"
        assert data["account"]["balance"] == 10000.0
        assert data["data_status"] is None

    def test_candles_limit(self):
        _configure()
        data = client.get("/candles", params={"limit": 5}).json()
        assert len(data["candles"]) == 5


class TestPairEndpoint:
    def test_switch_pair(self):
        _configure()
        assert client.post("/pair", json={"pair": "gbp/usd"}).json() == {"pair": "GBP/USD"}
        assert client.get("/state").json()["pair"] == "GBP/USD"

    def test_malformed_pair_is_rejected(self):
        session = _configure()
        client.post("/replay/seek", json={"index": 4})
        for bad in ("EUR/", "EURUSD", 7):
            data = client.post("/pair", json={"pair": bad}).json()
            assert "Invalid pair" in data["error"]
        assert session.pair == "EUR/USD"
        replay = client.get("/state").json()["replay"]
        assert replay["mode"] == "paused"
        assert replay["cursor_index"] == 4


class TestReplayEndpoints:
    def test_step_and_seek(self):
        _configure()
        data = client.post("/replay/step-forward", json={}).json()
        assert data["mode"] == "paused"
        data = client.post("/replay/step-forward", json={"n": 3}).json()
        assert data["cursor_index"] == 3
        data = client.post("/replay/seek", json={"index": 5}).json()
        assert data["visible_count"] == 6
        assert data["is_live"] is False
        data = client.post("/replay/step-backward", json={"n": 10}).json()
        assert data["cursor_index"] == 0

    def test_invalid_speed(self):
        _configure()
        data = client.post("/replay/speed", json={"speed": 3}).json()
        assert "error" in data

    def test_valid_speed(self):
        _configure()
        data = client.post("/replay/speed", json={"speed": 2}).json()
        assert data["speed"] == 2.0

    def test_invalid_timeframe(self):
        _configure()
        data = client.post("/replay/timeframe", json={"timeframe": "7H"}).json()
        assert "error" in data

    def test_timeframe_and_reset(self):
        _configure()
        client.post("/replay/seek", json={"index": 10})
        data = client.post("/replay/timeframe", json={"timeframe": "4H"}).json()
        assert data["timeframe"] == "4H"
        assert data["historical_length"] == 13
        data = client.post("/replay/reset").json()
        assert data["mode"] == "idle"

    def test_seek_requires_index(self):
        _configure()
        assert "error" in client.post("/replay/seek", json={}).json()


class TestPositionEndpoints:
    def test_open_update_close(self):
        session = _configure()
        client.post("/replay/step-forward", json={})
        pos = client.post(
            "/positions", json={"type": "long", "size": 1.0, "sl_pips": 20, "tp_pips": 40},
        ).json()
        assert pos["type"] == "long"
        assert pos["stop_loss"] < pos["entry_price"] < pos["take_profit"]

        listed = client.get("/positions").json()["positions"]
        assert listed[0]["risk_reward"] == pytest.approx(2.0)

        updated = client.patch(f"/positions/{pos['id']}", json={"take_profit": None}).json()
        assert updated["position"]["take_profit"] is None
        assert updated["position"]["stop_loss"] == pos["stop_loss"]

        closed = client.delete(f"/positions/{pos['id']}").json()
        assert closed["trade"]["close_reason"] == "manual"
        assert session.engine.state.positions == ()

    def test_invalid_side(self):
        _configure()
        client.post("/replay/step-forward", json={})
        assert "error" in client.post("/positions", json={"type": "up", "size": 1}).json()

    def test_unknown_id_is_ignored(self):
        _configure()
        client.post("/replay/step-forward", json={})
        assert client.delete("/positions/nope").json() == {"trade": None}

    def test_close_all_and_analytics(self):
        _configure()
        client.post("/replay/step-forward", json={})
        client.post("/positions", json={"type": "long", "size": 1})
        client.post("/positions", json={"type": "short", "size": 1})
        client.post("/replay/step-forward", json={"n": 2})
        trades = client.delete("/positions").json()["trades"]
        assert len(trades) == 2
        stats = client.get("/analytics").json()
        assert stats["total_trades"] == 2

    def test_account_reset(self):
        _configure()
        client.post("/replay/step-forward", json={})
        client.post("/positions", json={"type": "long", "size": 1})
        data = client.post("/account/reset").json()
        assert data["balance"] == 10000.0
        assert data["positions"] == []


class TestIndicatorEndpoints:
    def test_catalog_crud(self):
        _configure()
        catalog = client.get("/indicators/catalog").json()["indicators"]
        assert len(catalog) == 5

        added = client.post(
            "/indicators/catalog",
            json={"id": "ema-9", "name": "EMA", "kind": "overlay", "params": {"period": 9}},
        ).json()
        assert added["id"] == "ema-9"
        assert "9" in client.get("/indicators").json()["ema"]

        toggled = client.post("/indicators/catalog/rsi-default/toggle").json()
        assert toggled["indicator"]["enabled"] is False
        assert "rsi" not in client.get("/indicators").json()

        patched = client.patch(
            "/indicators/catalog/macd-default", json={"params": {"signal": 5}},
        ).json()
        assert patched["indicator"]["params"]["signal"] == 5

        client.delete("/indicators/catalog/ema-9")
        assert "ema" not in client.get("/indicators").json()

    def test_invalid_indicator(self):
        _configure()
        data = client.post("/indicators/catalog", json={"name": "RSI"}).json()
        assert "error" in data

    def test_invalid_params_rejected(self):
        session = _configure()
        resp = client.patch("/indicators/catalog/rsi-default", json={"params": {"period": 0}})
        assert resp.status_code == 200
        assert "period" in resp.json()["error"]
        assert session.catalog.get("rsi-default").params == {"period": 14}

        data = client.post(
            "/indicators/catalog",
            json={"id": "sma-x", "name": "SMA", "kind": "overlay", "params": {"period": "x"}},
        ).json()
        assert "error" in data
        assert session.catalog.get("sma-x") is None

    def test_stop_loss_fires_after_rejected_params(self):
        session = _configure()
        client.post("/replay/step-forward", json={})
        pos = client.post("/positions", json={"type": "short", "size": 1, "sl_pips": 5}).json()
        client.patch("/indicators/catalog/rsi-default", json={"params": {"period": 0}})

        for _ in range(3):
            assert client.post("/replay/step-forward", json={}).status_code == 200
        trades = session.engine.state.trades
        assert [t.close_reason for t in trades] == ["stop_loss"]
        assert trades[0].exit_price == pytest.approx(pos["stop_loss"])
        assert client.get("/positions").json()["positions"] == []

    def test_clear_catalog(self):
        _configure()
        client.delete("/indicators/catalog")
        assert client.get("/indicators").json() == {}
