"""Indicator catalog — the user's list of chart indicators.

Persistence goes through an injected ``IndicatorStore`` so the catalog
never touches ambient storage itself.
"""

import json
import logging
import pathlib
from dataclasses import replace
from typing import Optional, Protocol

from weaver.indicators.models import IndicatorConfig, validate_params

logger = logging.getLogger("weaver.indicators")

DEFAULT_INDICATORS: tuple[IndicatorConfig, ...] = (
    IndicatorConfig("rsi-default", "RSI", "separate", {"period": 14}),
    IndicatorConfig("macd-default", "MACD", "separate", {"fast": 12, "slow": 26, "signal": 9}),
    IndicatorConfig("stochastic-default", "Stochastic", "separate", {"kPeriod": 14, "dPeriod": 3}),
    IndicatorConfig("atr-default", "ATR", "separate", {"period": 14}),
    IndicatorConfig("volume-default", "Volume", "separate", {}),
)


class IndicatorStore(Protocol):
    """Load/save hooks for the catalog."""

    def load(self) -> Optional[list[IndicatorConfig]]:
        """Return the stored catalog, or ``None`` when nothing usable is stored."""
        ...

    def save(self, indicators: list[IndicatorConfig]) -> None:
        ...


class MemoryIndicatorStore:
    """Keeps the catalog in memory; used for tests and ephemeral sessions."""

    def __init__(self, indicators: Optional[list[IndicatorConfig]] = None) -> None:
        self.saved: Optional[list[IndicatorConfig]] = (
            list(indicators) if indicators is not None else None
        )

    def load(self) -> Optional[list[IndicatorConfig]]:
        return list(self.saved) if self.saved is not None else None

    def save(self, indicators: list[IndicatorConfig]) -> None:
        self.saved = list(indicators)


class JsonIndicatorStore:
    """Persists the catalog as a JSON list in *path*."""

    def __init__(self, path: "str | pathlib.Path") -> None:
        self._path = pathlib.Path(path)

    def load(self) -> Optional[list[IndicatorConfig]]:
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return [IndicatorConfig.from_dict(item) for item in raw]
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Ignoring unreadable indicator store %s: %s", self._path, exc)
            return None

    def save(self, indicators: list[IndicatorConfig]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps([ind.to_dict() for ind in indicators], indent=2),
            encoding="utf-8",
        )


class IndicatorCatalog:
    """Ordered list of ``IndicatorConfig`` with add/remove/toggle/update.

    Every mutation is saved to the store.  Unknown ids are ignored.

    Args:
        store: Persistence hooks; defaults are used when it has nothing.
    """

    def __init__(self, store: Optional[IndicatorStore] = None) -> None:
        self._store = store
        loaded = store.load() if store is not None else None
        self._indicators: list[IndicatorConfig] = (
            loaded if loaded is not None else list(DEFAULT_INDICATORS)
        )

    def _commit(self, indicators: list[IndicatorConfig]) -> None:
        self._indicators = indicators
        if self._store is not None:
            self._store.save(list(indicators))

    # ── Queries ──────────────────────────────────────────────────────────

    def all(self) -> list[IndicatorConfig]:
        return list(self._indicators)

    def get(self, indicator_id: str) -> Optional[IndicatorConfig]:
        return next((i for i in self._indicators if i.id == indicator_id), None)

    def enabled(self, kind: Optional[str] = None) -> list[IndicatorConfig]:
        """Enabled entries, optionally only those of *kind*."""
        return [
            i for i in self._indicators
            if i.enabled and (kind is None or i.kind == kind)
        ]

    # ── Mutation ─────────────────────────────────────────────────────────

    def add(self, config: IndicatorConfig) -> None:
        """Append *config*; an existing entry with the same id is replaced."""
        validate_params(config.params)
        remaining = [i for i in self._indicators if i.id != config.id]
        self._commit(remaining + [config])

    def remove(self, indicator_id: str) -> None:
        self._commit([i for i in self._indicators if i.id != indicator_id])

    def toggle(self, indicator_id: str) -> None:
        self._commit([
            replace(i, enabled=not i.enabled) if i.id == indicator_id else i
            for i in self._indicators
        ])

    def update_params(self, indicator_id: str, params: dict) -> None:
        """Merge *params* into the entry's existing params.

        Raises ``ValueError`` (and stores nothing) when a value is invalid.
        """
        validate_params(params)
        self._commit([
            replace(i, params={**i.params, **params}) if i.id == indicator_id else i
            for i in self._indicators
        ])

    def clear(self) -> None:
        self._commit([])
