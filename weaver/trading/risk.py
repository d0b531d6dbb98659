"""Order-ticket helpers — pip-distance SL/TP and risk/reward.  Pure math."""

import math
from typing import Optional

from weaver.trading.models import LONG, POSITION_TYPES

PIP_SIZE = 0.0001


def price_from_pips(pips: float, pip_size: float = PIP_SIZE) -> float:
    """Convert a pip distance to a price distance."""
    return pips * pip_size


def sl_tp_from_pips(
    position_type: str,
    price: float,
    sl_pips: Optional[float],
    tp_pips: Optional[float],
    pip_size: float = PIP_SIZE,
) -> tuple[Optional[float], Optional[float]]:
    """Return ``(stop_loss, take_profit)`` prices around *price*.

    Longs get the stop below and the target above; shorts the reverse.
    A ``None`` or non-positive pip distance leaves that bound unset.

    Raises ``ValueError`` for an invalid *position_type*.
    """
    if position_type not in POSITION_TYPES:
        raise ValueError(f"Invalid position type: {position_type!r}")

    sign = 1.0 if position_type == LONG else -1.0
    stop_loss = None
    take_profit = None
    if sl_pips is not None and sl_pips > 0:
        stop_loss = price - sign * price_from_pips(sl_pips, pip_size)
    if tp_pips is not None and tp_pips > 0:
        take_profit = price + sign * price_from_pips(tp_pips, pip_size)
    return stop_loss, take_profit


def risk_reward_ratio(
    entry_price: float,
    stop_loss: Optional[float],
    take_profit: Optional[float],
) -> Optional[float]:
    """Reward distance divided by risk distance.

    ``None`` when either bound is unset; ``math.inf`` when the stop sits
    on the entry price.
    """
    if stop_loss is None or take_profit is None:
        return None
    risk = abs(entry_price - stop_loss)
    reward = abs(take_profit - entry_price)
    if risk == 0:
        return math.inf
    return reward / risk


def pips_between(a: float, b: float, pip_size: float = PIP_SIZE) -> float:
    """Absolute distance between two prices in pips."""
    return abs(a - b) / pip_size
