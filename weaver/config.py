"""MarketWeaver — application configuration.

Loads .env variables into a typed config object.
Every variable has a default; a malformed numeric value fails fast.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    polygon_api_key: str
    polygon_base_url: str
    csv_path: str
    default_pair: str
    default_timeframe: str
    initial_balance: float
    leverage: float
    base_interval_seconds: float
    synthetic_seed: Optional[int]
    indicator_store_path: str
    log_level: str
    api_port: int

    @property
    def remote_enabled(self) -> bool:
        """``True`` when a remote quote provider key is configured."""
        return bool(self.polygon_api_key)


def _read_number(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(
            f"Invalid value for environment variable {name}: {raw!r}"
        ) from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` naming the variable when a numeric value cannot
    be parsed.
    """
    load_dotenv(dotenv_path=env_path)

    seed_raw = os.environ.get("SYNTHETIC_SEED", "")
    seed = _read_number("SYNTHETIC_SEED", seed_raw, int) if seed_raw else None

    return Config(
        polygon_api_key=os.environ.get("POLYGON_API_KEY", ""),
        polygon_base_url=os.environ.get(
            "POLYGON_BASE_URL", "https://api.polygon.io"
        ),
        csv_path=os.environ.get("CSV_PATH", "data/synthetic_ohlc.csv"),
        default_pair=os.environ.get("DEFAULT_PAIR", "EUR/USD"),
        default_timeframe=os.environ.get("DEFAULT_TIMEFRAME", "1H"),
        initial_balance=_read_number("INITIAL_BALANCE", "10000", float),
        leverage=_read_number("LEVERAGE", "100", float),
        base_interval_seconds=_read_number("BASE_INTERVAL_SECONDS", "1.0", float),
        synthetic_seed=seed,
        indicator_store_path=os.environ.get(
            "INDICATOR_STORE_PATH", "data/indicators.json"
        ),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_read_number("API_PORT", "8080", int),
    )
