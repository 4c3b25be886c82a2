"""RSI + EMA crossover strategy.

Entry score (buy at >= 4):
- RSI below oversold (+3), or in the 30-50 recovery zone (+1)
- Fast EMA crossing above slow (+3), or simply above it (+1)
- Volume above ``volume_multiplier`` x average (+2)
- Volatility above 5% of price (-1)

Exits: stop-loss / take-profit breach on the close, or RSI overbought
once the trade is at least ``min_profit_percent`` in profit.
"""
import logging
from typing import Optional, Sequence

from tradesim.services.strategies.base import BaseStrategy
from tradesim.services.strategies.indicators import Indicators
from tradesim.services.strategies.models import Signal

logger = logging.getLogger(__name__)

MIN_ENTRY_SCORE = 4


class RsiEmaStrategy(BaseStrategy):

    key = "rsi_ema"

    def __init__(self, config):
        super().__init__(config)
        self.rsi_period = config.rsi_period
        self.rsi_oversold = config.rsi_oversold
        self.rsi_overbought = config.rsi_overbought
        self.fast_ema = config.ema_fast_period
        self.slow_ema = config.ema_slow_period
        self.volume_period = config.volume_period
        self.volume_multiplier = config.volume_multiplier
        if self.fast_ema >= self.slow_ema:
            raise ValueError(
                f"ema_fast_period ({self.fast_ema}) must be below "
                f"ema_slow_period ({self.slow_ema})"
            )

    @property
    def lookback(self) -> int:
        return max(self.slow_ema, self.rsi_period) + 10

    def analyze(self, candles: Sequence, position=None) -> Signal:
        if not candles or len(candles) < self.slow_ema + self.rsi_period:
            return Signal.hold("Insufficient data for analysis")

        closes = self._closes(candles)
        volumes = [c[5] for c in candles]
        price = closes[-1]

        rsi = Indicators.rsi(closes, self.rsi_period)
        fast = Indicators.ema(closes, self.fast_ema)
        slow = Indicators.ema(closes, self.slow_ema)
        crossover = Indicators.ema_crossover(closes, self.fast_ema, self.slow_ema)
        avg_volume = Indicators.average_volume(volumes, self.volume_period)
        volatility = Indicators.volatility(closes, 20)

        if position is not None:
            return self._check_exit(position, price, rsi)

        return self._check_entry(price, rsi, fast, slow, crossover,
                                 volumes[-1], avg_volume, volatility)

    # ── Entry ───────────────────────────────────────────────────────────

    def _check_entry(self, price: float, rsi: Optional[float],
                     fast: Optional[float], slow: Optional[float],
                     crossover: str, volume: float,
                     avg_volume: Optional[float],
                     volatility: Optional[float]) -> Signal:
        reasons = []
        score = 0

        if rsi is not None:
            if rsi < self.rsi_oversold:
                reasons.append(f"RSI oversold ({rsi:.2f})")
                score += 3
            elif 30 <= rsi <= 50:
                reasons.append(f"RSI bullish zone ({rsi:.2f})")
                score += 1

        if crossover == "bullish":
            reasons.append("Bullish EMA crossover")
            score += 3
        elif fast is not None and slow is not None and fast > slow:
            reasons.append("Fast EMA above Slow EMA")
            score += 1

        if avg_volume and volume > avg_volume * self.volume_multiplier:
            reasons.append(f"High volume ({volume / avg_volume:.2f}x avg)")
            score += 2

        if volatility is not None and price > 0:
            volatility_pct = volatility / price * 100
            if volatility_pct > 5:
                reasons.append(f"High volatility ({volatility_pct:.2f}%) - caution")
                score -= 1

        if score >= MIN_ENTRY_SCORE:
            logger.debug(f"BUY signal @ {price:.4f} score={score}: {', '.join(reasons)}")
            return Signal.buy(price, ", ".join(reasons), score=score, rsi=rsi,
                              fast_ema=fast, slow_ema=slow)

        return Signal.hold(
            f"Insufficient signal strength (score: {score}/{MIN_ENTRY_SCORE})",
            score=score,
            conditions=", ".join(reasons) or "No conditions met",
        )

    # ── Exit ────────────────────────────────────────────────────────────

    def _check_exit(self, position, price: float, rsi: Optional[float]) -> Signal:
        profit_pct = self._profit_percent(position, price)

        if price <= position.stop_loss:
            return Signal.sell(price, "Stop loss triggered", profit_percent=profit_pct)

        if price >= position.take_profit:
            return Signal.sell(price, "Take profit triggered", profit_percent=profit_pct)

        if (rsi is not None and rsi > self.rsi_overbought
                and profit_pct > self.config.min_profit_percent):
            return Signal.sell(price, "RSI overbought with profit",
                               profit_percent=profit_pct, rsi=rsi)

        return Signal.hold("Position maintained", profit_percent=profit_pct)
