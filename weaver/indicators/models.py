"""Indicator data models — series points and catalog entries."""

import math
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ValuePoint:
    """A single-valued indicator sample (RSI, ATR, EMA, SMA)."""

    time: int
    value: float


@dataclass(frozen=True)
class MACDPoint:
    time: int
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerPoint:
    time: int
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class StochasticPoint:
    time: int
    k: float
    d: float


@dataclass(frozen=True)
class VolumePoint:
    """Bar volume with its direction and trailing average."""

    time: int
    value: float
    is_up: bool  # close >= open
    average: Optional[float] = None


# Params that are bar counts; they must be whole numbers >= 1.
PERIOD_PARAMS = frozenset({"period", "fast", "slow", "signal", "kPeriod", "dPeriod"})


def validate_params(params: dict) -> dict:
    """Return *params* if every value is a usable number.

    Raises ``ValueError`` for a non-numeric value, a period that is not a
    whole number >= 1, or a non-positive ``stdDev``.
    """
    if not isinstance(params, dict):
        raise ValueError("params must be an object")
    for key, value in params.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Indicator param {key!r} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise ValueError(f"Indicator param {key!r} must be finite")
        if key in PERIOD_PARAMS and (value < 1 or value != int(value)):
            raise ValueError(f"Indicator param {key!r} must be an integer >= 1, got {value!r}")
        if key == "stdDev" and value <= 0:
            raise ValueError(f"Indicator param 'stdDev' must be > 0, got {value!r}")
    return params


@dataclass(frozen=True)
class IndicatorConfig:
    """One entry of the user's indicator catalog."""

    id: str
    name: str
    kind: str  # "overlay" or "separate"
    params: dict = field(default_factory=dict)
    enabled: bool = True
    color: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "params": dict(self.params),
            "enabled": self.enabled,
        }
        if self.color is not None:
            data["color"] = self.color
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "IndicatorConfig":
        """Build from a stored dict.

        Raises ``ValueError`` when required keys are missing, *kind* is
        not ``overlay``/``separate`` or a param fails :func:`validate_params`.
        """
        try:
            config_id = str(data["id"])
            name = str(data["name"])
        except KeyError as exc:
            raise ValueError(f"Indicator config missing key {exc}") from None
        kind = str(data.get("kind", data.get("type", "separate")))
        if kind not in ("overlay", "separate"):
            raise ValueError(f"Invalid indicator kind: {kind!r}")
        return cls(
            id=config_id,
            name=name,
            kind=kind,
            params=dict(validate_params(data.get("params") or {})),
            enabled=bool(data.get("enabled", True)),
            color=data.get("color"),
        )
