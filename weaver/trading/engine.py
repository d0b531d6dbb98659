"""Trading engine — simulated leveraged positions against the replayed price.

Every operation builds a new ``TradingState`` and swaps it in with a
single assignment, so readers only ever see a complete snapshot.
Unknown position ids are ignored: they can only come from a caller bug,
not from user input.
"""

import logging
import uuid
from dataclasses import replace
from typing import Callable, Optional

from weaver.trading.models import (
    CLOSE_ALL,
    CLOSE_MANUAL,
    CLOSE_STOP_LOSS,
    CLOSE_TAKE_PROFIT,
    LONG,
    POSITION_TYPES,
    Position,
    Trade,
    TradingState,
)

logger = logging.getLogger("weaver.trading")

INITIAL_BALANCE = 10_000.0
LEVERAGE = 100.0

# Sentinel for "leave this bound unchanged" in update_position().
_UNCHANGED = object()


def calculate_pnl(
    position_type: str,
    entry_price: float,
    exit_price: float,
    size: float,
    leverage: float = LEVERAGE,
) -> float:
    """P&L of *size* lots moved from *entry_price* to *exit_price*.

        long:  (exit - entry) × size × leverage
        short: (entry - exit) × size × leverage
    """
    if position_type == LONG:
        price_diff = exit_price - entry_price
    else:
        price_diff = entry_price - exit_price
    return price_diff * size * leverage


def check_exit(position: Position, price: float) -> Optional[tuple[float, str]]:
    """Return ``(exit_price, reason)`` if *price* breaches SL or TP, else ``None``.

    The exit is settled at the breached bound, not at *price*.  The stop
    loss is checked first, so it wins when both bounds are breached.
    Unset bounds never trigger.
    """
    sl = position.stop_loss
    tp = position.take_profit

    if position.type == LONG:
        if sl is not None and price <= sl:
            return sl, CLOSE_STOP_LOSS
        if tp is not None and price >= tp:
            return tp, CLOSE_TAKE_PROFIT
    else:
        if sl is not None and price >= sl:
            return sl, CLOSE_STOP_LOSS
        if tp is not None and price <= tp:
            return tp, CLOSE_TAKE_PROFIT
    return None


def _new_id() -> str:
    return str(uuid.uuid4())


class TradingEngine:
    """Owns balance, equity, open positions and the closed-trade ledger.

    Args:
        initial_balance: Starting balance restored by :meth:`reset_account`.
        leverage: Multiplier applied to price-difference P&L.
        id_factory: Generates position/trade ids (injectable for tests).
    """

    def __init__(
        self,
        initial_balance: float = INITIAL_BALANCE,
        leverage: float = LEVERAGE,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._initial_balance = initial_balance
        self._leverage = leverage
        self._new_id = id_factory
        self._state = TradingState(balance=initial_balance, equity=initial_balance)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def state(self) -> TradingState:
        """Current account snapshot."""
        return self._state

    @property
    def leverage(self) -> float:
        return self._leverage

    def get_position(self, position_id: str) -> Optional[Position]:
        return next((p for p in self._state.positions if p.id == position_id), None)

    def unrealized_pnl(self, price: Optional[float] = None) -> float:
        """Sum of open-position P&L marked at *price* (default: current price)."""
        mark = self._state.current_price if price is None else price
        return self._unrealized(self._state.positions, mark)

    def position_pnl(self, position: Position, price: Optional[float] = None) -> float:
        mark = self._state.current_price if price is None else price
        return self._pnl(position, mark)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _pnl(self, position: Position, exit_price: float) -> float:
        return calculate_pnl(
            position.type, position.entry_price, exit_price,
            position.size, self._leverage,
        )

    def _unrealized(self, positions: tuple[Position, ...], price: float) -> float:
        return sum(self._pnl(p, price) for p in positions)

    def _settle(
        self,
        position: Position,
        exit_price: float,
        exit_time: int,
        reason: str,
    ) -> Trade:
        return Trade(
            id=self._new_id(),
            type=position.type,
            entry_price=position.entry_price,
            exit_price=exit_price,
            size=position.size,
            pnl=self._pnl(position, exit_price),
            entry_time=position.entry_time,
            exit_time=exit_time,
            position_id=position.id,
            close_reason=reason,
        )

    def _commit(
        self,
        balance: float,
        positions: tuple[Position, ...],
        trades: tuple[Trade, ...],
        price: float,
    ) -> TradingState:
        self._state = TradingState(
            balance=balance,
            equity=balance + self._unrealized(positions, price),
            positions=positions,
            trades=trades,
            current_price=price,
        )
        return self._state

    # ── Operations ───────────────────────────────────────────────────────

    def open_position(
        self,
        position_type: str,
        size: float,
        price: float,
        time: int,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
    ) -> Position:
        """Open a position at *price*.  The balance is not touched.

        Raises ``ValueError`` for a type other than ``long``/``short``.
        """
        if position_type not in POSITION_TYPES:
            raise ValueError(f"Invalid position type: {position_type!r}")

        position = Position(
            id=self._new_id(),
            type=position_type,
            entry_price=price,
            size=size,
            entry_time=time,
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        state = self._state
        self._commit(
            state.balance,
            state.positions + (position,),
            state.trades,
            price,
        )
        logger.info(
            "Opened %s %.2f lots @ %.5f (SL=%s, TP=%s)",
            position_type.upper(), size, price, stop_loss, take_profit,
        )
        return position

    def update_price(self, price: float, time: int) -> list[Trade]:
        """Mark positions to *price*, closing any whose SL/TP is breached.

        Returns the trades settled on this tick.
        """
        state = self._state
        remaining: list[Position] = []
        settled: list[Trade] = []

        for position in state.positions:
            hit = check_exit(position, price)
            if hit is None:
                remaining.append(position)
                continue
            exit_price, reason = hit
            trade = self._settle(position, exit_price, time, reason)
            settled.append(trade)
            logger.info(
                "%s hit on %s %s @ %.5f: P&L %.2f",
                reason, position.type, position.id, exit_price, trade.pnl,
            )

        self._commit(
            state.balance + sum(t.pnl for t in settled),
            tuple(remaining),
            state.trades + tuple(settled),
            price,
        )
        return settled

    def close_position(
        self,
        position_id: str,
        exit_price: float,
        exit_time: int,
    ) -> Optional[Trade]:
        """Close one position at *exit_price*; ``None`` for an unknown id.

        Remaining positions are marked at *exit_price*.
        """
        state = self._state
        position = self.get_position(position_id)
        if position is None:
            logger.debug("close_position: unknown id %s ignored", position_id)
            return None

        trade = self._settle(position, exit_price, exit_time, CLOSE_MANUAL)
        self._commit(
            state.balance + trade.pnl,
            tuple(p for p in state.positions if p.id != position_id),
            state.trades + (trade,),
            exit_price,
        )
        logger.info(
            "Closed %s %s @ %.5f: P&L %.2f",
            position.type, position.id, exit_price, trade.pnl,
        )
        return trade

    def close_all_positions(self, exit_price: float, exit_time: int) -> list[Trade]:
        """Close every open position in one state transition."""
        state = self._state
        trades = [
            self._settle(p, exit_price, exit_time, CLOSE_ALL)
            for p in state.positions
        ]
        self._commit(
            state.balance + sum(t.pnl for t in trades),
            (),
            state.trades + tuple(trades),
            exit_price,
        )
        if trades:
            logger.info(
                "Closed all %d positions @ %.5f: P&L %.2f",
                len(trades), exit_price, sum(t.pnl for t in trades),
            )
        return trades

    def update_position(
        self,
        position_id: str,
        stop_loss=_UNCHANGED,
        take_profit=_UNCHANGED,
    ) -> Optional[Position]:
        """Move a position's SL and/or TP.  Pass ``None`` to clear a bound.

        Balance and equity are unaffected; an unknown id is ignored.
        """
        position = self.get_position(position_id)
        if position is None:
            return None

        changes = {}
        if stop_loss is not _UNCHANGED:
            changes["stop_loss"] = stop_loss
        if take_profit is not _UNCHANGED:
            changes["take_profit"] = take_profit
        updated = replace(position, **changes)

        self._state = replace(
            self._state,
            positions=tuple(
                updated if p.id == position_id else p
                for p in self._state.positions
            ),
        )
        return updated

    def reset_account(self) -> TradingState:
        """Restore the initial balance and clear positions and trades."""
        self._state = TradingState(
            balance=self._initial_balance,
            equity=self._initial_balance,
        )
        logger.info("Account reset to %.2f", self._initial_balance)
        return self._state
