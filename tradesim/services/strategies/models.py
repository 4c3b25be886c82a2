"""
Data models for the strategy system.
Signal, ExitPrices, PositionSize, StrategyConfig and the STRATEGIES registry.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

HOLD = "HOLD"
BUY = "BUY"
SELL = "SELL"


# ── Signal (output of every strategy evaluation) ────────────────────────────

@dataclass(frozen=True)
class Signal:
    """Advisory trading decision. The ledger re-checks exits on its own."""
    action: str                 # "HOLD", "BUY", "SELL"
    reason: str = ""
    price: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)   # opaque sizing hints, scores

    @classmethod
    def hold(cls, reason: str, **details) -> "Signal":
        return cls(HOLD, reason, None, details)

    @classmethod
    def buy(cls, price: float, reason: str = "", **details) -> "Signal":
        return cls(BUY, reason, price, details)

    @classmethod
    def sell(cls, price: float, reason: str, **details) -> "Signal":
        return cls(SELL, reason, price, details)

    @property
    def is_buy(self) -> bool:
        return self.action == BUY

    @property
    def is_sell(self) -> bool:
        return self.action == SELL


@dataclass(frozen=True)
class ExitPrices:
    stop_loss: float
    take_profit: float


@dataclass(frozen=True)
class PositionSize:
    quantity: float
    position_value: float
    risk_amount: float
    risk_percent: float         # % of the sizing balance actually at risk
    capped: bool = False        # True when max_position_size scaled quantity down


# ── Strategy Configuration ──────────────────────────────────────────────────

@dataclass(frozen=True)
class StrategyConfig:
    key: str
    name: str
    description: str
    style: str                  # momentum, scalping


STRATEGIES: Dict[str, StrategyConfig] = {
    "rsi_ema": StrategyConfig(
        key="rsi_ema",
        name="RSI + EMA Crossover",
        description="Momentum entries scored from RSI zones, fast/slow EMA crossover "
                    "and volume confirmation. Exits on stop/target breach or RSI "
                    "overbought once the minimum profit is reached.",
        style="momentum",
    ),
    "scalping": StrategyConfig(
        key="scalping",
        name="Scalping Strategy (High Frequency)",
        description="Price-action scalper: double bottoms and bullish 3-bar plays "
                    "with per-pattern cooldown. Break-even exit once the trade has "
                    "moved in favour. Suited to 1m-5m candles.",
        style="scalping",
    ),
}
