"""Control API routers — /state, /replay, /positions, /indicators, /analytics.

No business logic.  Every handler delegates to the injected
``ReplaySession`` and returns plain dicts.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from weaver.indicators.models import IndicatorConfig
from weaver.session import ReplaySession

logger = logging.getLogger("weaver")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_session: Optional[ReplaySession] = None  # Set via configure_routers()


def configure_routers(session: Optional[ReplaySession]) -> None:
    """Inject the replay session from the application startup."""
    global _session  # noqa: PLW0603
    _session = session


def _no_session() -> dict:
    return {"error": "No session configured"}


def _optional_float(body: dict, key: str) -> Optional[float]:
    value = body.get(key)
    return None if value is None else float(value)


# ── State ────────────────────────────────────────────────────────────────


@router.get("/state")
async def get_state():
    """Replay, account, indicator and data-source snapshot."""
    if _session is None:
        return _no_session()
    return _session.snapshot()


@router.get("/candles")
async def get_candles(limit: Optional[int] = Query(default=None, ge=1)):
    """Bars currently on screen, oldest first."""
    if _session is None:
        return _no_session()
    return {"candles": _session.visible_candles(limit)}


@router.post("/pair")
async def post_pair(body: dict):
    if _session is None:
        return _no_session()
    pair = body.get("pair")
    if not isinstance(pair, str):
        return {"error": f"Invalid pair: {pair!r}"}
    try:
        await _session.set_pair(pair)
    except ValueError as exc:
        return {"error": str(exc)}
    return {"pair": _session.pair}


# ── Replay control ───────────────────────────────────────────────────────


@router.post("/replay/play")
async def replay_play():
    if _session is None:
        return _no_session()
    await _session.play()
    return _session.controller.to_dict()


@router.post("/replay/pause")
async def replay_pause():
    if _session is None:
        return _no_session()
    await _session.pause()
    return _session.controller.to_dict()


@router.post("/replay/step-forward")
async def replay_step_forward(body: Optional[dict] = None):
    if _session is None:
        return _no_session()
    try:
        n = int((body or {}).get("n", 1))
    except (TypeError, ValueError):
        return {"error": "n must be an integer"}
    await _session.step_forward(n)
    return _session.controller.to_dict()


@router.post("/replay/step-backward")
async def replay_step_backward(body: Optional[dict] = None):
    if _session is None:
        return _no_session()
    try:
        n = int((body or {}).get("n", 1))
    except (TypeError, ValueError):
        return {"error": "n must be an integer"}
    await _session.step_backward(n)
    return _session.controller.to_dict()


@router.post("/replay/reset")
async def replay_reset():
    """Return to the live view and reset the account."""
    if _session is None:
        return _no_session()
    await _session.reset()
    logger.info("Replay reset via API.")
    return _session.controller.to_dict()


@router.post("/replay/seek")
async def replay_seek(body: dict):
    if _session is None:
        return _no_session()
    try:
        index = int(body["index"])
    except (KeyError, TypeError, ValueError):
        return {"error": "index must be an integer"}
    await _session.seek(index)
    return _session.controller.to_dict()


@router.post("/replay/speed")
async def replay_speed(body: dict):
    if _session is None:
        return _no_session()
    try:
        await _session.set_speed(float(body.get("speed")))
    except (TypeError, ValueError) as exc:
        return {"error": str(exc)}
    return _session.controller.to_dict()


@router.post("/replay/timeframe")
async def replay_timeframe(body: dict):
    if _session is None:
        return _no_session()
    try:
        await _session.set_timeframe(str(body.get("timeframe")))
    except ValueError as exc:
        return {"error": str(exc)}
    return _session.controller.to_dict()


# ── Positions ────────────────────────────────────────────────────────────


@router.get("/positions")
async def get_positions():
    if _session is None:
        return _no_session()
    return {"positions": _session.account_summary()["positions"]}


@router.post("/positions")
async def open_position(body: dict):
    """Open a position at the current bar's close.

    Body: ``type`` (long/short), ``size``, optional ``stop_loss`` /
    ``take_profit`` prices or ``sl_pips`` / ``tp_pips`` distances.
    """
    if _session is None:
        return _no_session()
    try:
        position = await _session.open_position(
            str(body.get("type", "")),
            float(body.get("size", 0.0)),
            stop_loss=_optional_float(body, "stop_loss"),
            take_profit=_optional_float(body, "take_profit"),
            sl_pips=_optional_float(body, "sl_pips"),
            tp_pips=_optional_float(body, "tp_pips"),
        )
    except (TypeError, ValueError) as exc:
        return {"error": str(exc)}
    if position is None:
        return {"error": "No candle available"}
    return position.to_dict()


@router.delete("/positions/{position_id}")
async def close_position(position_id: str):
    if _session is None:
        return _no_session()
    trade = await _session.close_position(position_id)
    return {"trade": trade.to_dict() if trade else None}


@router.delete("/positions")
async def close_all_positions():
    if _session is None:
        return _no_session()
    trades = await _session.close_all_positions()
    return {"trades": [t.to_dict() for t in trades]}


@router.patch("/positions/{position_id}")
async def update_position(position_id: str, body: dict):
    """Move SL/TP.  A ``null`` value clears that bound; omitted keys are kept."""
    if _session is None:
        return _no_session()
    bounds = {}
    try:
        for key in ("stop_loss", "take_profit"):
            if key in body:
                bounds[key] = _optional_float(body, key)
    except (TypeError, ValueError) as exc:
        return {"error": str(exc)}
    position = await _session.update_position(position_id, **bounds)
    return {"position": position.to_dict() if position else None}


@router.post("/account/reset")
async def reset_account():
    if _session is None:
        return _no_session()
    await _session.reset_account()
    return _session.account_summary()


@router.get("/analytics")
async def get_analytics():
    if _session is None:
        return _no_session()
    return _session.analytics()


# ── Indicators ───────────────────────────────────────────────────────────


@router.get("/indicators")
async def get_indicators():
    """Latest value of every computed indicator series."""
    if _session is None:
        return _no_session()
    return _session.indicators.latest()


@router.get("/indicators/catalog")
async def get_catalog():
    if _session is None:
        return _no_session()
    return {"indicators": [i.to_dict() for i in _session.catalog.all()]}


@router.post("/indicators/catalog")
async def add_indicator(body: dict):
    if _session is None:
        return _no_session()
    try:
        config = IndicatorConfig.from_dict(body)
    except ValueError as exc:
        return {"error": str(exc)}
    try:
        _session.catalog.add(config)
    except ValueError as exc:
        return {"error": str(exc)}
    _session.recompute_indicators()
    return config.to_dict()


@router.delete("/indicators/catalog/{indicator_id}")
async def remove_indicator(indicator_id: str):
    if _session is None:
        return _no_session()
    _session.catalog.remove(indicator_id)
    _session.recompute_indicators()
    return {"status": "removed", "id": indicator_id}


@router.post("/indicators/catalog/{indicator_id}/toggle")
async def toggle_indicator(indicator_id: str):
    if _session is None:
        return _no_session()
    _session.catalog.toggle(indicator_id)
    _session.recompute_indicators()
    config = _session.catalog.get(indicator_id)
    return {"indicator": config.to_dict() if config else None}


@router.patch("/indicators/catalog/{indicator_id}")
async def update_indicator(indicator_id: str, body: dict):
    """Merge ``params`` into the indicator's existing params."""
    if _session is None:
        return _no_session()
    params = body.get("params", {})
    if not isinstance(params, dict):
        return {"error": "params must be an object"}
    try:
        _session.catalog.update_params(indicator_id, params)
    except ValueError as exc:
        return {"error": str(exc)}
    _session.recompute_indicators()
    config = _session.catalog.get(indicator_id)
    return {"indicator": config.to_dict() if config else None}


@router.delete("/indicators/catalog")
async def clear_catalog():
    if _session is None:
        return _no_session()
    _session.catalog.clear()
    _session.recompute_indicators()
    return {"indicators": []}
