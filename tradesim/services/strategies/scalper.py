"""Price-action scalping strategy.

Entry patterns (buy at score >= ``scalp_min_score``):
- Double bottom: two swing lows within tolerance, >= 10 candles apart,
  price bouncing off the second one (+4, +1 with volume)
- Bullish 3-4 bar play: at least 3 green bodies in the last 4 candles
  (+3, +1 when strong, +1 with volume)
- Low volume penalty (-1)

Each pattern has a cooldown so the same setup cannot fire on consecutive
candles. Exits: break-even stop once the trade has at some point gained
``scalp_breakeven_trigger`` %, stop / take-profit, double top or reversal
bars while in profit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from tradesim.services.strategies.base import BaseStrategy
from tradesim.services.strategies.indicators import Indicators
from tradesim.services.strategies.models import Signal

logger = logging.getLogger(__name__)

PATTERN_WINDOW = 50
BAR_PLAY_LENGTH = 4
MIN_SWING_SEPARATION = 10
SAME_LEVEL_TOLERANCE = 0.005


@dataclass
class PatternMemory:
    """Cooldown state for one strategy run (candle indices / price levels)."""
    last_double_bottom_level: Optional[float] = None
    last_double_bottom_candle: Optional[int] = None
    last_bar_play_candle: Optional[int] = None
    # Best unrealized gain (%) of the position currently held
    tracked_entry: Optional[datetime] = None
    best_profit_pct: float = 0.0

    def track(self, position, profit_pct: float) -> float:
        if position.entry_time != self.tracked_entry:
            self.tracked_entry = position.entry_time
            self.best_profit_pct = profit_pct
        self.best_profit_pct = max(self.best_profit_pct, profit_pct)
        return self.best_profit_pct

    def double_bottom_blocked(self, level: float, index: int, cooldown: int) -> bool:
        if self.last_double_bottom_level is None or self.last_double_bottom_candle is None:
            return False
        same_level = (abs(level - self.last_double_bottom_level) / level
                      < SAME_LEVEL_TOLERANCE)
        return same_level and index - self.last_double_bottom_candle < cooldown

    def bar_play_blocked(self, index: int, cooldown: int) -> bool:
        if self.last_bar_play_candle is None:
            return False
        return index - self.last_bar_play_candle < cooldown


class ScalpingStrategy(BaseStrategy):

    key = "scalping"

    def __init__(self, config):
        super().__init__(config)
        self.min_score = config.scalp_min_score
        self.cooldown = config.scalp_pattern_cooldown
        self.tolerance = config.scalp_double_tolerance
        self.breakeven_trigger = config.scalp_breakeven_trigger
        self.memory = PatternMemory()
        logger.info(
            f"Scalping strategy: SL {self.stop_loss_percent}% TP {self.take_profit_percent}% "
            f"min score {self.min_score}, cooldown {self.cooldown} candles, "
            f"double tolerance {self.tolerance * 100:.2f}%"
        )

    @property
    def lookback(self) -> int:
        return PATTERN_WINDOW

    def analyze(self, candles: Sequence, position=None) -> Signal:
        if not candles or len(candles) < PATTERN_WINDOW:
            return Signal.hold("Insufficient data for scalping")

        index = len(candles) - 1
        price = candles[-1][4]

        if position is not None:
            return self._check_exit(position, price, candles)

        double_bottom = self.detect_double_bottom(candles)
        if double_bottom and self.memory.double_bottom_blocked(
                double_bottom["level"], index, self.cooldown):
            double_bottom = None

        bar_play = self.detect_bar_play(candles)
        if bar_play and bar_play["type"] == "BULLISH" and self.memory.bar_play_blocked(
                index, self.cooldown):
            bar_play = None

        return self._check_entry(price, index, candles, double_bottom, bar_play)

    # ── Entry ───────────────────────────────────────────────────────────

    def _check_entry(self, price: float, index: int, candles: Sequence,
                     double_bottom: Optional[Dict], bar_play: Optional[Dict]) -> Signal:
        volume_ratio = self._volume_ratio(candles)
        score = 0
        reasons: List[str] = []
        setup = None

        if double_bottom:
            score += 4
            reasons.append(f"Double Bottom at {double_bottom['level']:.2f}")
            setup = "DOUBLE_BOTTOM"
            if volume_ratio > 1.2:
                score += 1
                reasons.append("Volume Confirmation")

        bullish_bars = bar_play is not None and bar_play["type"] == "BULLISH"
        if bullish_bars:
            score += 3
            reasons.append(f"{bar_play['bars']}-Bar Bullish Play ({bar_play['strength']})")
            setup = setup or "BAR_PLAY"
            if bar_play["strength"] == "STRONG":
                score += 1
                reasons.append("Strong Momentum Bars")
            if volume_ratio > 1.3:
                score += 1
                reasons.append("High Volume Breakout")

        if volume_ratio < 0.8 and score > 0:
            score -= 1
            reasons.append("Low Volume (Risk)")

        if score >= self.min_score:
            if double_bottom:
                self.memory.last_double_bottom_level = double_bottom["level"]
                self.memory.last_double_bottom_candle = index
            if bullish_bars:
                self.memory.last_bar_play_candle = index
            logger.debug(f"SCALPING BUY {setup} @ {price:.4f} score={score}: "
                         f"{' | '.join(reasons)}")
            return Signal.buy(price, " | ".join(reasons), score=score, setup=setup)

        return Signal.hold(
            f"No scalping pattern (Score: {score}/{self.min_score})",
            double_bottom=double_bottom is not None,
            bar_play=bar_play["type"] if bar_play else None,
        )

    # ── Exit ────────────────────────────────────────────────────────────

    def _check_exit(self, position, price: float, candles: Sequence) -> Signal:
        profit_pct = self._profit_percent(position, price)
        best_pct = self.memory.track(position, profit_pct)

        stop = position.stop_loss
        if best_pct > self.breakeven_trigger:
            stop = max(position.stop_loss, position.entry_price * 1.0001)

        if price <= stop:
            reason = "Breakeven stop" if stop > position.stop_loss else "Stop loss triggered"
            return Signal.sell(price, reason, profit_percent=profit_pct)

        if price >= position.take_profit:
            return Signal.sell(price, "Scalping take profit", profit_percent=profit_pct)

        if profit_pct > 0.4 and self.detect_double_top(candles):
            return Signal.sell(price, "Double top pattern with profit",
                               profit_percent=profit_pct)

        if profit_pct > 0.5:
            bearish = sum(1 for c in candles[-3:] if c[4] < c[1])
            if bearish >= 2:
                return Signal.sell(price, "Reversal pattern with profit",
                                   profit_percent=profit_pct)

        return Signal.hold("Position maintained", profit_percent=profit_pct,
                           breakeven=stop != position.stop_loss)

    # ── Pattern detection ───────────────────────────────────────────────

    @staticmethod
    def _swings(window: Sequence, field: int, lows: bool) -> List[Dict]:
        """Local extremes of ``field`` against two neighbours on each side."""
        swings = []
        for i in range(5, len(window) - 2):
            value = window[i][field]
            neighbours = [window[i + k][field] for k in (-2, -1, 1, 2)]
            if lows:
                is_swing = all(value <= n for n in neighbours)
            else:
                is_swing = all(value >= n for n in neighbours)
            if is_swing:
                swings.append({"price": value, "index": i})
        return swings

    def _find_double(self, candles: Sequence, lows: bool) -> Optional[float]:
        window = candles[-PATTERN_WINDOW:]
        swings = self._swings(window, 3 if lows else 2, lows)
        if len(swings) < 2:
            return None

        price = candles[-1][4]
        last = len(swings) - 1
        for i in range(last):
            for j in range(i + 1, len(swings)):
                first, second = swings[i], swings[j]
                diff = abs(first["price"] - second["price"]) / first["price"]
                if diff >= self.tolerance:
                    continue
                if second["index"] - first["index"] < MIN_SWING_SEPARATION or j != last:
                    continue
                level = (first["price"] + second["price"]) / 2
                if lows:
                    confirmed = price > level * 1.001 and price > candles[-1][3]
                else:
                    confirmed = price < level * 0.999 and price < candles[-1][2]
                if confirmed and self._follow_through(candles[-3:], rising=lows):
                    return level
        return None

    @staticmethod
    def _follow_through(last3: Sequence, rising: bool) -> bool:
        count = 0
        for idx, c in enumerate(last3):
            if idx == 0:
                count += 1
            elif rising and c[4] >= last3[idx - 1][4]:
                count += 1
            elif not rising and c[4] <= last3[idx - 1][4]:
                count += 1
        return count >= 2

    def detect_double_bottom(self, candles: Sequence) -> Optional[Dict]:
        level = self._find_double(candles, lows=True)
        return {"level": level} if level is not None else None

    def detect_double_top(self, candles: Sequence) -> Optional[Dict]:
        level = self._find_double(candles, lows=False)
        return {"level": level} if level is not None else None

    @staticmethod
    def detect_bar_play(candles: Sequence) -> Optional[Dict]:
        """3-4 bar momentum play over the last four candles."""
        if len(candles) < 5:
            return None
        recent = candles[-BAR_PLAY_LENGTH:]
        bodies = [abs(c[4] - c[1]) for c in recent]
        avg_body = sum(bodies) / len(bodies)
        last_body = bodies[-1]

        bullish = [c for c in recent if c[4] > c[1]]
        bearish = [c for c in recent if c[4] < c[1]]

        def strength() -> str:
            if last_body > avg_body * 1.5:
                return "STRONG"
            if last_body > avg_body:
                return "MODERATE"
            return "WEAK"

        if len(bullish) >= 3:
            grade = strength()
            bull_bodies = [c[4] - c[1] for c in bullish]
            if bull_bodies[-1] > bull_bodies[0]:
                grade = "STRONG"
            return {"type": "BULLISH", "bars": len(bullish), "strength": grade}
        if len(bearish) >= 3:
            return {"type": "BEARISH", "bars": len(bearish), "strength": strength()}
        return None

    @staticmethod
    def _volume_ratio(candles: Sequence) -> float:
        volumes = [c[5] for c in candles]
        avg = Indicators.sma(volumes[:-1], 19)
        if not avg:
            return 1.0
        return volumes[-1] / avg
