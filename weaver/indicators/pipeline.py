"""Indicator pipeline — recomputes the enabled indicators for a candle set.

Called after every replay transition; the catalog decides what to
compute.  Overlays (EMA, SMA, Bollinger) are included only when an
enabled overlay entry names them.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from weaver.indicators.calculations import (
    DEFAULT_EMA_PERIODS,
    DEFAULT_SMA_PERIODS,
    calculate_atr,
    calculate_bollinger,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
    calculate_sma,
    calculate_stochastic,
    calculate_volume,
)
from weaver.indicators.models import (
    BollingerPoint,
    IndicatorConfig,
    MACDPoint,
    StochasticPoint,
    ValuePoint,
    VolumePoint,
    validate_params,
)
from weaver.market.models import Candle

logger = logging.getLogger("weaver.indicators")


@dataclass(frozen=True)
class IndicatorSnapshot:
    """All indicator series derived from one candle set."""

    rsi: list[ValuePoint] = field(default_factory=list)
    macd: list[MACDPoint] = field(default_factory=list)
    bollinger: list[BollingerPoint] = field(default_factory=list)
    stochastic: list[StochasticPoint] = field(default_factory=list)
    atr: list[ValuePoint] = field(default_factory=list)
    volume: list[VolumePoint] = field(default_factory=list)
    ema: dict[int, list[ValuePoint]] = field(default_factory=dict)
    sma: dict[int, list[ValuePoint]] = field(default_factory=dict)

    def latest(self) -> dict:
        """Most recent value of every non-empty series."""
        out: dict = {}
        for name in ("rsi", "atr"):
            series = getattr(self, name)
            if series:
                out[name] = series[-1].value
        if self.macd:
            p = self.macd[-1]
            out["macd"] = {"macd": p.macd, "signal": p.signal, "histogram": p.histogram}
        if self.bollinger:
            p = self.bollinger[-1]
            out["bollinger"] = {"upper": p.upper, "middle": p.middle, "lower": p.lower}
        if self.stochastic:
            p = self.stochastic[-1]
            out["stochastic"] = {"k": p.k, "d": p.d}
        if self.volume:
            p = self.volume[-1]
            out["volume"] = {"value": p.value, "is_up": p.is_up, "average": p.average}
        for label, group in (("ema", self.ema), ("sma", self.sma)):
            latest = {str(k): v[-1].value for k, v in group.items() if v}
            if latest:
                out[label] = latest
        return out


def _usable(config: IndicatorConfig) -> bool:
    try:
        validate_params(config.params)
    except ValueError as exc:
        logger.warning("Skipping indicator %s: %s", config.id, exc)
        return False
    return True


def _int_param(config: IndicatorConfig, key: str, default: int) -> int:
    return int(config.params.get(key, default))


def _periods(configs: list[IndicatorConfig], defaults: tuple[int, ...]) -> list[int]:
    """Periods requested by overlay entries; *defaults* when none set one."""
    periods = sorted({int(c.params["period"]) for c in configs if "period" in c.params})
    return periods or list(defaults)


def compute_indicators(
    candles: list[Candle],
    configs: Optional[list[IndicatorConfig]] = None,
) -> IndicatorSnapshot:
    """Compute every enabled indicator in *configs* over *candles*.

    With ``configs=None`` every indicator is computed with default
    parameters.  Entries whose params fail validation are skipped.
    """
    if configs is None:
        return IndicatorSnapshot(
            rsi=calculate_rsi(candles),
            macd=calculate_macd(candles),
            bollinger=calculate_bollinger(candles),
            stochastic=calculate_stochastic(candles),
            atr=calculate_atr(candles),
            volume=calculate_volume(candles),
            ema={p: calculate_ema(candles, p) for p in DEFAULT_EMA_PERIODS},
            sma={p: calculate_sma(candles, p) for p in DEFAULT_SMA_PERIODS},
        )

    enabled = [c for c in configs if c.enabled and _usable(c)]
    by_name: dict[str, list[IndicatorConfig]] = {}
    for config in enabled:
        by_name.setdefault(config.name.strip().lower(), []).append(config)

    def first(name: str) -> Optional[IndicatorConfig]:
        entries = by_name.get(name)
        return entries[0] if entries else None

    result: dict = {}

    cfg = first("rsi")
    if cfg is not None:
        result["rsi"] = calculate_rsi(candles, _int_param(cfg, "period", 14))
    cfg = first("macd")
    if cfg is not None:
        result["macd"] = calculate_macd(
            candles,
            fast=_int_param(cfg, "fast", 12),
            slow=_int_param(cfg, "slow", 26),
            signal=_int_param(cfg, "signal", 9),
        )
    cfg = first("stochastic")
    if cfg is not None:
        result["stochastic"] = calculate_stochastic(
            candles,
            k_period=_int_param(cfg, "kPeriod", 14),
            d_period=_int_param(cfg, "dPeriod", 3),
        )
    cfg = first("atr")
    if cfg is not None:
        result["atr"] = calculate_atr(candles, _int_param(cfg, "period", 14))
    cfg = first("volume")
    if cfg is not None:
        result["volume"] = calculate_volume(candles, _int_param(cfg, "period", 20))

    overlays = [c for c in enabled if c.kind == "overlay"]
    overlay_names = {c.name.strip().lower() for c in overlays}

    bollinger_cfg = next(
        (c for c in overlays if c.name.strip().lower() in ("bollinger", "bollinger bands")),
        None,
    )
    if bollinger_cfg is not None:
        result["bollinger"] = calculate_bollinger(
            candles,
            period=_int_param(bollinger_cfg, "period", 20),
            std_dev=float(bollinger_cfg.params.get("stdDev", 2.0)),
        )
    if "ema" in overlay_names:
        ema_cfgs = [c for c in overlays if c.name.strip().lower() == "ema"]
        result["ema"] = {
            p: calculate_ema(candles, p) for p in _periods(ema_cfgs, DEFAULT_EMA_PERIODS)
        }
    if "sma" in overlay_names:
        sma_cfgs = [c for c in overlays if c.name.strip().lower() == "sma"]
        result["sma"] = {
            p: calculate_sma(candles, p) for p in _periods(sma_cfgs, DEFAULT_SMA_PERIODS)
        }

    return IndicatorSnapshot(**result)
