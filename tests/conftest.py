"""
Shared builders for the backtest tests: synthetic candles, configs and a
scripted strategy whose decisions are fixed per candle index.
"""
import os
import tempfile

# The database module binds its engine at import time.
_DB_DIR = tempfile.mkdtemp(prefix="tradesim-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"

from typing import Dict, Iterable, List, Optional

import pytest

from tradesim.config import BacktestConfig
from tradesim.services.market_data import Candle
from tradesim.services.strategies import BaseStrategy, PositionSize, Signal

HOUR_MS = 60 * 60 * 1000
START_MS = 1704067200000  # 2024-01-01 00:00 UTC


def make_config(**overrides) -> BacktestConfig:
    values = dict(initial_balance=200.0, leverage=2, maker_fee=0.001, taker_fee=0.001,
                  stop_loss_percent=0.5, take_profit_percent=1.8, min_history=1)
    values.update(overrides)
    return BacktestConfig(**values)


def make_candles(closes: Iterable[float], start_ms: int = START_MS, step_ms: int = HOUR_MS,
                 lows: Optional[Dict[int, float]] = None,
                 highs: Optional[Dict[int, float]] = None,
                 volume: float = 100.0) -> List[Candle]:
    """Candles whose open is the previous close; wicks only where given."""
    lows = lows or {}
    highs = highs or {}
    candles = []
    prev = None
    for i, close in enumerate(closes):
        open_ = close if prev is None else prev
        candles.append(Candle(
            start_ms + i * step_ms,
            open_,
            highs.get(i, max(open_, close)),
            lows.get(i, min(open_, close)),
            close,
            volume,
        ))
        prev = close
    return candles


class ScriptedStrategy(BaseStrategy):
    """Buys / sells on fixed candle indices; optional fixed quantity."""

    key = "scripted"

    def __init__(self, config, buys=(), sells=(), quantity=None, fail_on=()):
        super().__init__(config)
        self.buys = set(buys)
        self.sells = set(sells)
        self.quantity = quantity
        self.fail_on = set(fail_on)
        self.seen_positions = []

    def analyze(self, candles, position=None):
        i = len(candles) - 1
        self.seen_positions.append(position)
        if i in self.fail_on:
            raise RuntimeError(f"boom at {i}")
        price = candles[-1][4]
        if position is None and i in self.buys:
            return Signal.buy(price, "scripted buy")
        if position is not None and i in self.sells:
            return Signal.sell(price, "Scripted sell")
        return Signal.hold("scripted hold")

    def calculate_position_size(self, balance, entry_price, stop_loss):
        if self.quantity is None:
            return super().calculate_position_size(balance, entry_price, stop_loss)
        value = self.quantity * entry_price
        return PositionSize(self.quantity, value, 0.0, 0.0)


class AlwaysHold(BaseStrategy):
    key = "hold"

    def analyze(self, candles, position=None):
        return Signal.hold("never trades")


@pytest.fixture
def config():
    return make_config()
