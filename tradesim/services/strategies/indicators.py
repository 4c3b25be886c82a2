"""
Indicators over plain close / volume lists.

All functions are pure: they take the price history seen so far and
return None (or an empty series) while the history is too short.
"""
import math
from typing import List, Optional


def _relative_strength(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    return 100 - 100 / (1 + avg_gain / avg_loss)


class Indicators:
    """Namespace of stateless indicator computations."""

    # ── Series ──────────────────────────────────────────────────────────

    @staticmethod
    def ema_series(values: List[float], period: int) -> List[float]:
        """EMA values from index ``period - 1`` onward, seeded with the SMA."""
        if period <= 0 or len(values) < period:
            return []
        alpha = 2.0 / (period + 1)
        current = sum(values[:period]) / period
        series = [current]
        for value in values[period:]:
            current = alpha * value + (1 - alpha) * current
            series.append(current)
        return series

    @staticmethod
    def rsi_series(closes: List[float], period: int = 14) -> List[float]:
        """Wilder RSI, one value per close after the first ``period`` moves."""
        if len(closes) <= period:
            return []
        moves = [b - a for a, b in zip(closes, closes[1:])]
        avg_gain = sum(m for m in moves[:period] if m > 0) / period
        avg_loss = sum(-m for m in moves[:period] if m < 0) / period

        series = [_relative_strength(avg_gain, avg_loss)]
        for move in moves[period:]:
            avg_gain = (avg_gain * (period - 1) + max(move, 0.0)) / period
            avg_loss = (avg_loss * (period - 1) + max(-move, 0.0)) / period
            series.append(_relative_strength(avg_gain, avg_loss))
        return series

    # ── Latest value ────────────────────────────────────────────────────

    @staticmethod
    def rsi(closes: List[float], period: int = 14) -> Optional[float]:
        series = Indicators.rsi_series(closes, period)
        return series[-1] if series else None

    @staticmethod
    def ema(values: List[float], period: int) -> Optional[float]:
        series = Indicators.ema_series(values, period)
        return series[-1] if series else None

    @staticmethod
    def sma(values: List[float], period: int) -> Optional[float]:
        if period <= 0 or len(values) < period:
            return None
        return sum(values[-period:]) / period

    @staticmethod
    def average_volume(volumes: List[float], period: int = 20) -> Optional[float]:
        return Indicators.sma(volumes, period)

    @staticmethod
    def volatility(closes: List[float], period: int = 20) -> Optional[float]:
        """Population standard deviation of the trailing window."""
        mean = Indicators.sma(closes, period)
        if mean is None:
            return None
        window = closes[-period:]
        return math.sqrt(sum((c - mean) ** 2 for c in window) / period)

    @staticmethod
    def ema_crossover(closes: List[float], fast: int, slow: int) -> str:
        """Direction of a fast/slow EMA cross on the latest close, else 'none'."""
        if len(closes) <= slow:
            return "none"
        fast_ema = Indicators.ema_series(closes, fast)
        slow_ema = Indicators.ema_series(closes, slow)
        # Align both series on the latest two closes
        spread = [f - s for f, s in zip(fast_ema[-2:], slow_ema[-2:])]
        if len(spread) < 2:
            return "none"
        before, now = spread
        if before <= 0 < now:
            return "bullish"
        if before >= 0 > now:
            return "bearish"
        return "none"
