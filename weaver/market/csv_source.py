"""Local candle file source — parses a historical OHLCV CSV once.

Accepts both a named timestamp column and the index-style layout written
by pandas (``,Open,High,Low,Close,Volume``).  Rows without a usable
timestamp or with a non-finite OHLC value are dropped silently.
"""

import logging
import math
import re
from pathlib import Path

import pandas as pd

from weaver.market.models import Candle

logger = logging.getLogger("weaver.market")

_OHLCV_COLUMNS = ("open", "high", "low", "close", "volume")
_NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)?$")


def normalize_epoch(value: float) -> int:
    """Convert an epoch in seconds or milliseconds to integer seconds.

    Values above ``1e12`` are taken as milliseconds.  Non-finite input
    yields 0.
    """
    if not math.isfinite(value):
        return 0
    seconds = value / 1000 if value > 1e12 else value
    return int(math.floor(seconds))


def parse_timestamp(raw: object) -> int:
    """Parse a CSV timestamp cell into UTC epoch seconds (0 when unusable).

    Numeric cells are epochs; anything else is read as an ISO-like date,
    treated as UTC when it carries no zone.
    """
    if raw is None:
        return 0
    text = str(raw).strip()
    if not text:
        return 0

    if _NUMERIC_RE.match(text):
        return normalize_epoch(float(text))

    try:
        ts = pd.Timestamp(text.replace(" ", "T", 1))
    except ValueError:
        return 0
    if ts is pd.NaT:
        return 0
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return normalize_epoch(ts.timestamp())


def _find_column(columns: list[str], name: str) -> str | None:
    for col in columns:
        if col.strip().lower() == name:
            return col
    return None


def parse_candle_frame(df: pd.DataFrame) -> list[Candle]:
    """Convert a raw string frame into ascending, de-duplicated candles."""
    columns = [str(c) for c in df.columns]
    mapping = {name: _find_column(columns, name) for name in _OHLCV_COLUMNS}
    if not all(mapping[n] for n in ("open", "high", "low", "close")):
        logger.warning("CSV is missing OHLC columns: %s", columns)
        return []

    known = {c for c in mapping.values() if c}
    ts_col = next((c for c in columns if c not in known), None)
    if ts_col is None:
        logger.warning("CSV has no timestamp column")
        return []

    numeric = {
        name: pd.to_numeric(df[col], errors="coerce")
        for name, col in mapping.items()
        if col
    }

    by_time: dict[int, Candle] = {}
    for i, raw_ts in enumerate(df[ts_col].tolist()):
        t = parse_timestamp(raw_ts)
        if t <= 0:
            continue
        o = float(numeric["open"].iat[i])
        h = float(numeric["high"].iat[i])
        l = float(numeric["low"].iat[i])
        c = float(numeric["close"].iat[i])
        if not all(math.isfinite(v) for v in (o, h, l, c)):
            continue
        vol = float(numeric["volume"].iat[i]) if "volume" in numeric else 0.0
        by_time[t] = Candle(
            time=t,
            open=o,
            high=h,
            low=l,
            close=c,
            volume=vol if math.isfinite(vol) else 0.0,
        )

    return [by_time[t] for t in sorted(by_time)]


def load_csv_candles(path: str | Path) -> list[Candle]:
    """Load a candle CSV from *path*.

    Raises ``FileNotFoundError`` when the file does not exist.
    """
    csv_file = Path(path)
    if not csv_file.is_file():
        raise FileNotFoundError(f"Candle file not found: {csv_file}")

    df = pd.read_csv(
        csv_file, dtype=str, keep_default_na=False, skip_blank_lines=True,
    )
    candles = parse_candle_frame(df)
    logger.info("Loaded %d candles from %s", len(candles), csv_file)
    return candles
