"""MarketWeaver — replay session (orchestration).

Connects the data service, replay controller, indicator pipeline and
trading engine.  Every replay transition triggers one synchronous
reaction: the latest close is pushed into the trading engine, then
indicators are recomputed for the new visible bars.  Public coroutines
serialise all mutation behind one ``asyncio.Lock``.
"""

import asyncio
import logging
import math
from typing import Optional

from weaver.config import Config
from weaver.indicators.catalog import IndicatorCatalog
from weaver.indicators.pipeline import IndicatorSnapshot, compute_indicators
from weaver.market.data_service import MarketDataService, split_pair
from weaver.market.models import Candle, Timeframe
from weaver.market.synthetic import make_rng
from weaver.replay.controller import PlaybackMode, ReplayController
from weaver.trading.engine import TradingEngine
from weaver.trading.models import Position, Trade
from weaver.trading.risk import pips_between, risk_reward_ratio, sl_tp_from_pips
from weaver.trading.stats import calculate_stats

logger = logging.getLogger("weaver")


class ReplaySession:
    """One user's replay + paper-trading session.

    Args:
        controller: Playback over the local history.
        engine: Paper-trading account.
        catalog: Indicator catalog deciding what to compute.
        data_service: Candle sources; ``None`` for a purely local session.
        pair: Currency pair label, e.g. ``"EUR/USD"``.
    """

    def __init__(
        self,
        controller: ReplayController,
        engine: TradingEngine,
        catalog: IndicatorCatalog,
        data_service: Optional[MarketDataService] = None,
        pair: str = "EUR/USD",
    ) -> None:
        self._controller = controller
        self._engine = engine
        self._catalog = catalog
        self._data = data_service
        self._pair = pair
        self._lock = asyncio.Lock()
        self._indicators = IndicatorSnapshot()
        self._controller.add_listener(self._on_candles_changed)

    @classmethod
    def from_config(
        cls,
        config: Config,
        data_service: Optional[MarketDataService] = None,
        catalog: Optional[IndicatorCatalog] = None,
    ) -> "ReplaySession":
        """Build a session with components configured from *config*."""
        controller = ReplayController(
            timeframe=config.default_timeframe,
            base_interval=config.base_interval_seconds,
            rng=make_rng(config.synthetic_seed),
        )
        engine = TradingEngine(
            initial_balance=config.initial_balance,
            leverage=config.leverage,
        )
        return cls(
            controller=controller,
            engine=engine,
            catalog=catalog or IndicatorCatalog(),
            data_service=data_service,
            pair=config.default_pair,
        )

    # ── Accessors ────────────────────────────────────────────────────────

    @property
    def controller(self) -> ReplayController:
        return self._controller

    @property
    def engine(self) -> TradingEngine:
        return self._engine

    @property
    def catalog(self) -> IndicatorCatalog:
        return self._catalog

    @property
    def indicators(self) -> IndicatorSnapshot:
        return self._indicators

    @property
    def pair(self) -> str:
        return self._pair

    @property
    def current_candle(self) -> Optional[Candle]:
        return self._controller.current_candle

    # ── Reaction to replay transitions ──────────────────────────────────

    def _on_candles_changed(self, candles: list[Candle]) -> None:
        # Price first: SL/TP must settle even if indicators cannot be computed.
        if candles:
            last = candles[-1]
            self._engine.update_price(last.close, last.time)
        self._indicators = compute_indicators(candles, self._catalog.enabled())

    def recompute_indicators(self) -> IndicatorSnapshot:
        """Recompute indicators after a catalog change."""
        self._indicators = compute_indicators(
            self._controller.visible_candles, self._catalog.enabled(),
        )
        return self._indicators

    # ── Data loading ─────────────────────────────────────────────────────

    async def _refresh_live(self, force: bool = True) -> None:
        if self._data is None:
            return
        live = await self._data.fetch_live(
            self._pair, self._controller.timeframe, force=force,
        )
        if live:
            self._controller.set_external(live)
            return
        if not self._controller.has_external and self._controller.historical:
            logger.info("Showing local data in place of the live feed")
            self._data.mark_local_fallback(self._controller.historical)

    async def start(self) -> None:
        """Load the local history, then try the remote feed for the idle view."""
        async with self._lock:
            if self._data is None:
                return
            base = self._data.load_local()
            self._controller.load_history(base)
            await self._refresh_live(force=True)

    async def refresh(self, force: bool = False) -> None:
        """Poll the remote feed; only meaningful while idle."""
        async with self._lock:
            if self._controller.mode is PlaybackMode.IDLE:
                await self._refresh_live(force=force)

    async def shutdown(self) -> None:
        await self._controller.stop()

    # ── Playback ─────────────────────────────────────────────────────────

    async def play(self) -> None:
        async with self._lock:
            self._controller.play()

    async def pause(self) -> None:
        async with self._lock:
            self._controller.pause()

    async def step_forward(self, n: int = 1) -> None:
        async with self._lock:
            self._controller.step_forward(n)

    async def step_backward(self, n: int = 1) -> None:
        async with self._lock:
            self._controller.step_backward(n)

    async def seek(self, index: int) -> None:
        async with self._lock:
            self._controller.seek(index)

    async def set_speed(self, speed: float) -> None:
        async with self._lock:
            self._controller.set_speed(speed)

    async def set_timeframe(self, timeframe: "Timeframe | str") -> None:
        async with self._lock:
            self._controller.set_timeframe(timeframe)
            if self._controller.mode is PlaybackMode.IDLE and self._data is not None:
                self._controller.set_external([])
                await self._refresh_live(force=True)

    async def set_pair(self, pair: str) -> None:
        """Switch pair: playback returns to idle and live data is reloaded.

        *pair* is normalised to upper-case ``BASE/QUOTE``.  Raises
        ``ValueError`` for a malformed pair, leaving the session untouched.
        """
        base, quote = split_pair(pair)
        pair = f"{base}/{quote}"
        async with self._lock:
            if pair == self._pair:
                return
            self._pair = pair
            self._controller.reset()
            self._controller.set_external([])
            if self._data is not None:
                await self._refresh_live(force=True)

    async def reset(self) -> None:
        """Reset playback and the account together."""
        async with self._lock:
            self._controller.reset()
            self._engine.reset_account()
            current = self._controller.current_candle
            if current is not None:
                self._engine.update_price(current.close, current.time)

    # ── Trading ──────────────────────────────────────────────────────────

    async def open_position(
        self,
        position_type: str,
        size: float,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        sl_pips: Optional[float] = None,
        tp_pips: Optional[float] = None,
    ) -> Optional[Position]:
        """Open at the current bar's close; ``None`` when nothing is shown.

        Pip distances are converted to prices when explicit prices are
        not given.
        """
        async with self._lock:
            candle = self._controller.current_candle
            if candle is None:
                return None
            if sl_pips is not None or tp_pips is not None:
                pip_sl, pip_tp = sl_tp_from_pips(
                    position_type, candle.close, sl_pips, tp_pips,
                )
                stop_loss = stop_loss if stop_loss is not None else pip_sl
                take_profit = take_profit if take_profit is not None else pip_tp
            return self._engine.open_position(
                position_type, size, candle.close, candle.time,
                stop_loss=stop_loss, take_profit=take_profit,
            )

    async def close_position(self, position_id: str) -> Optional[Trade]:
        async with self._lock:
            candle = self._controller.current_candle
            if candle is None:
                return None
            return self._engine.close_position(position_id, candle.close, candle.time)

    async def close_all_positions(self) -> list[Trade]:
        async with self._lock:
            candle = self._controller.current_candle
            if candle is None:
                return []
            return self._engine.close_all_positions(candle.close, candle.time)

    async def update_position(self, position_id: str, **bounds) -> Optional[Position]:
        """Move SL/TP; accepts ``stop_loss`` and/or ``take_profit`` keywords."""
        async with self._lock:
            return self._engine.update_position(position_id, **bounds)

    async def reset_account(self) -> None:
        async with self._lock:
            self._engine.reset_account()

    # ── Snapshots ────────────────────────────────────────────────────────

    def account_summary(self) -> dict:
        state = self._engine.state
        positions = []
        for p in state.positions:
            data = p.to_dict()
            data["unrealized_pnl"] = self._engine.position_pnl(p)
            rr = risk_reward_ratio(p.entry_price, p.stop_loss, p.take_profit)
            # JSON has no infinity.
            data["risk_reward"] = None if rr is not None and math.isinf(rr) else rr
            for key, bound in (("sl_pips", p.stop_loss), ("tp_pips", p.take_profit)):
                data[key] = None if bound is None else pips_between(p.entry_price, bound)
            positions.append(data)
        return {
            "balance": state.balance,
            "equity": state.equity,
            "current_price": state.current_price,
            "unrealized_pnl": self._engine.unrealized_pnl(),
            "positions": positions,
            "trades": [t.to_dict() for t in state.trades],
        }

    def analytics(self) -> dict:
        return calculate_stats(list(self._engine.state.trades))

    def snapshot(self) -> dict:
        """Everything the presentation layer renders, as plain data."""
        current = self._controller.current_candle
        status = None
        if self._data is not None:
            status = self._data.status.to_dict(self._data.now())
        return {
            "pair": self._pair,
            "replay": self._controller.to_dict(),
            "current_candle": current.to_dict() if current else None,
            "account": self.account_summary(),
            "indicators": self._indicators.latest(),
            "data_status": status,
        }

    def visible_candles(self, limit: Optional[int] = None) -> list[dict]:
        candles = self._controller.visible_candles
        if limit is not None:
            candles = candles[-limit:]
        return [c.to_dict() for c in candles]

