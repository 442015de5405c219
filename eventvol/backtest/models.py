"""Backtest value types — trade outcomes, execution settings and run results."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from eventvol.risk.straddle_params import StraddleParameters


class TradeOutcome(str, enum.Enum):
    TAKE_PROFIT = "TakeProfit"
    STOP_LOSS = "StopLoss"
    WHIPSAW = "Whipsaw"
    TIMEOUT = "Timeout"
    NO_ENTRY = "NoEntry"


@dataclass(frozen=True)
class BacktestSettings:
    """Execution assumptions shared by every simulated trade."""
    spread_pips: float = 1.0
    slippage_pips: float = 0.5
    take_profit_pips: Optional[float] = None

    @property
    def cost_pips(self) -> float:
        """Spread plus slippage on both entry and exit."""
        return self.spread_pips + 2 * self.slippage_pips


@dataclass(frozen=True)
class TradeResult:
    """Outcome of the straddle on one event occurrence."""
    event_time: datetime
    outcome: TradeOutcome
    direction: Optional[str] = None  # "long" or "short"
    entry_time: Optional[datetime] = None
    entry_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    exit_price: Optional[float] = None
    pips_gross: float = 0.0
    pips_net: float = 0.0
    mfe_pips: float = 0.0
    mae_pips: float = 0.0
    duration_minutes: int = 0
    trigger_minute: Optional[int] = None  # minutes from release to the fill
    recovery_pips: Optional[float] = None  # second leg in simultaneous mode

    @property
    def entered(self) -> bool:
        return self.outcome is not TradeOutcome.NO_ENTRY

    def to_dict(self) -> dict:
        def _iso(dt: Optional[datetime]) -> Optional[str]:
            return dt.isoformat() if dt is not None else None

        return {
            "event_time": _iso(self.event_time),
            "outcome": self.outcome.value,
            "direction": self.direction,
            "entry_time": _iso(self.entry_time),
            "entry_price": self.entry_price,
            "exit_time": _iso(self.exit_time),
            "exit_price": self.exit_price,
            "pips_gross": round(self.pips_gross, 2),
            "pips_net": round(self.pips_net, 2),
            "mfe_pips": round(self.mfe_pips, 2),
            "mae_pips": round(self.mae_pips, 2),
            "duration_minutes": self.duration_minutes,
            "trigger_minute": self.trigger_minute,
            "recovery_pips": None if self.recovery_pips is None else round(self.recovery_pips, 2),
        }


@dataclass(frozen=True)
class BacktestResult:
    symbol: str
    event_type: str
    parameters: StraddleParameters
    trades: list[TradeResult] = field(default_factory=list)
    stats: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "event_type": self.event_type,
            "parameters": self.parameters.to_dict(),
            "stats": self.stats,
            "trades": [t.to_dict() for t in self.trades],
        }

