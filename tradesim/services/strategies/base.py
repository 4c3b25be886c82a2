"""
Base strategy class with the shared exit-price and position-sizing logic.
All concrete strategies inherit from this.
"""
from typing import Optional, Sequence

from tradesim.config import BacktestConfig
from tradesim.services.strategies.models import ExitPrices, PositionSize, Signal


class BaseStrategy:
    """Abstract base for all trading strategies.

    ``analyze`` receives the growing candle window and a read-only snapshot
    of the open position (or None). Strategies may keep their own memory
    between calls but never touch the ledger.
    """

    key = "base"

    def __init__(self, config: BacktestConfig):
        self.config = config
        self.stop_loss_percent = config.stop_loss_percent
        self.take_profit_percent = config.take_profit_percent

    @property
    def lookback(self) -> int:
        """Candles this strategy needs before it can say anything useful."""
        return 1

    @property
    def min_history(self) -> int:
        if self.config.min_history is not None:
            return self.config.min_history
        return self.lookback

    def analyze(self, candles: Sequence, position=None) -> Signal:
        raise NotImplementedError

    # ── Shared exits / sizing ───────────────────────────────────────────

    def calculate_exit_prices(self, entry_price: float) -> ExitPrices:
        return ExitPrices(
            stop_loss=entry_price * (1 - self.stop_loss_percent / 100),
            take_profit=entry_price * (1 + self.take_profit_percent / 100),
        )

    def calculate_position_size(self, balance: float, entry_price: float,
                                stop_loss: float) -> PositionSize:
        """Risk-based sizing capped at ``max_position_size`` of ``balance``.

        ``balance`` is the effective (leveraged) sizing balance. When the
        risk-sized value exceeds the cap, quantity is scaled down so the
        cap holds.
        """
        risk_per_unit = entry_price - stop_loss
        if balance <= 0 or entry_price <= 0 or risk_per_unit <= 0:
            return PositionSize(0.0, 0.0, 0.0, 0.0)

        risk_amount = balance * self.config.risk_per_trade
        quantity = risk_amount / risk_per_unit
        position_value = quantity * entry_price

        max_value = balance * self.config.max_position_size
        if position_value > max_value:
            quantity = max_value / entry_price
            risk_amount = quantity * risk_per_unit
            return PositionSize(
                quantity=quantity,
                position_value=max_value,
                risk_amount=risk_amount,
                risk_percent=risk_amount / balance * 100,
                capped=True,
            )

        return PositionSize(
            quantity=quantity,
            position_value=position_value,
            risk_amount=risk_amount,
            risk_percent=risk_amount / balance * 100,
        )

    # ── Helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def _closes(candles: Sequence) -> list:
        return [c[4] for c in candles]

    @staticmethod
    def _profit_percent(position, price: float) -> Optional[float]:
        if position is None or position.entry_price <= 0:
            return None
        return (price - position.entry_price) / position.entry_price * 100
