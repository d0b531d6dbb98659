"""Session statistics — pure functions over the closed-trade ledger."""

import math
from datetime import datetime, timezone

from weaver.trading.models import LONG, SHORT, Trade


def calculate_stats(trades: list[Trade]) -> dict:
    """Compute summary statistics for a list of closed trades.

    Returns:
        Dict with ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``breakeven_trades``, ``win_rate`` (percent), ``long_win_rate``,
        ``short_win_rate``, ``long_pnl``, ``short_pnl``, ``total_pnl``,
        ``avg_pnl``, ``sharpe_ratio``, ``max_drawdown`` and
        ``pnl_by_hour`` (exit hour UTC → P&L).
    """
    if not trades:
        return {
            "total_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "breakeven_trades": 0,
            "win_rate": 0.0,
            "long_win_rate": 0.0,
            "short_win_rate": 0.0,
            "long_pnl": 0.0,
            "short_pnl": 0.0,
            "total_pnl": 0.0,
            "avg_pnl": 0.0,
            "sharpe_ratio": 0.0,
            "max_drawdown": 0.0,
            "pnl_by_hour": {},
        }

    pnls = [t.pnl for t in trades]
    total = len(pnls)
    longs = [t for t in trades if t.type == LONG]
    shorts = [t for t in trades if t.type == SHORT]

    return {
        "total_trades": total,
        "winning_trades": sum(1 for p in pnls if p > 0),
        "losing_trades": sum(1 for p in pnls if p < 0),
        "breakeven_trades": sum(1 for p in pnls if p == 0),
        "win_rate": _win_rate(trades),
        "long_win_rate": _win_rate(longs),
        "short_win_rate": _win_rate(shorts),
        "long_pnl": sum(t.pnl for t in longs),
        "short_pnl": sum(t.pnl for t in shorts),
        "total_pnl": sum(pnls),
        "avg_pnl": sum(pnls) / total,
        "sharpe_ratio": _sharpe(pnls),
        "max_drawdown": _max_drawdown(pnls),
        "pnl_by_hour": _pnl_by_hour(trades),
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def _win_rate(trades: list[Trade]) -> float:
    """Percentage of *trades* with positive P&L (0 when empty)."""
    if not trades:
        return 0.0
    return sum(1 for t in trades if t.pnl > 0) / len(trades) * 100.0


def _sharpe(pnls: list[float]) -> float:
    """Per-trade Sharpe ratio: mean / sample standard deviation.

    Returns 0.0 with fewer than 2 observations or zero variance.
    """
    n = len(pnls)
    if n < 2:
        return 0.0
    mean = sum(pnls) / n
    variance = sum((p - mean) ** 2 for p in pnls) / (n - 1)
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    return mean / std


def _max_drawdown(pnls: list[float]) -> float:
    """Largest peak-to-trough fall of the cumulative P&L curve (>= 0)."""
    peak = 0.0
    cumulative = 0.0
    worst = 0.0
    for p in pnls:
        cumulative += p
        peak = max(peak, cumulative)
        worst = max(worst, peak - cumulative)
    return worst


def _pnl_by_hour(trades: list[Trade]) -> dict[int, float]:
    out: dict[int, float] = {}
    for t in trades:
        hour = datetime.fromtimestamp(t.exit_time, tz=timezone.utc).hour
        out[hour] = out.get(hour, 0.0) + t.pnl
    return dict(sorted(out.items()))
