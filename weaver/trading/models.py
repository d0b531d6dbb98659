"""Trading data models — positions, closed trades and the account state."""

from dataclasses import dataclass, field
from typing import Optional

LONG = "long"
SHORT = "short"
POSITION_TYPES = (LONG, SHORT)

# Trade close reasons
CLOSE_STOP_LOSS = "stop_loss"
CLOSE_TAKE_PROFIT = "take_profit"
CLOSE_MANUAL = "manual"
CLOSE_ALL = "close_all"


@dataclass(frozen=True)
class Position:
    """An open simulated position.  ``size`` is in lots."""

    id: str
    type: str  # "long" or "short"
    entry_price: float
    size: float
    entry_time: int
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "entry_price": self.entry_price,
            "size": self.size,
            "entry_time": self.entry_time,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
        }


@dataclass(frozen=True)
class Trade:
    """A closed position with its realised P&L."""

    id: str
    type: str
    entry_price: float
    exit_price: float
    size: float
    pnl: float
    entry_time: int
    exit_time: int
    position_id: str = ""
    close_reason: str = CLOSE_MANUAL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "size": self.size,
            "pnl": self.pnl,
            "entry_time": self.entry_time,
            "exit_time": self.exit_time,
            "position_id": self.position_id,
            "close_reason": self.close_reason,
        }


@dataclass(frozen=True)
class TradingState:
    """Immutable account snapshot.

    ``equity == balance + unrealised P&L of positions`` at ``current_price``.
    """

    balance: float
    equity: float
    positions: tuple[Position, ...] = field(default_factory=tuple)
    trades: tuple[Trade, ...] = field(default_factory=tuple)
    current_price: float = 0.0

    def to_dict(self) -> dict:
        return {
            "balance": self.balance,
            "equity": self.equity,
            "current_price": self.current_price,
            "positions": [p.to_dict() for p in self.positions],
            "trades": [t.to_dict() for t in self.trades],
        }
