"""
Backtesting Engine
==================
Replays a historical candle sequence through a strategy to simulate how it
would have performed.

Per candle, in order:
  1. safety gates (trade ceiling, balance floor) end the run gracefully
  2. the strategy sees the growing window ``candles[:i + 1]`` and a
     snapshot of the open position
  3. liquidation is checked before anything else can close the position
  4. a Buy opens a position (daily gate, minimum order value, balance)
  5. a Sell closes it at the signal price
  6. otherwise stop-loss then take-profit fill at their threshold price
  7. peak / drawdown are refreshed from free balance; mark-to-market
     equity is recorded for the Sharpe ratio
Whatever is still open when the candles run out is closed at the last
close with reason "End of period".
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence

from tradesim.config import BacktestConfig
from tradesim.services.ledger import InsufficientBalance, Ledger, Trade
from tradesim.services.market_data import (
    Candle,
    CandleSource,
    NoCandleData,
    build_candle_source,
    candles_per_day,
    fetch_historical_candles,
    to_candle,
)
from tradesim.services.reporting import BacktestResult
from tradesim.services.statistics import compute_statistics
from tradesim.services.strategies import BaseStrategy, Signal, create_strategy

logger = logging.getLogger(__name__)

END_OF_PERIOD_REASON = "End of period"
STOP_LOSS_REASON = "Stop loss"
TAKE_PROFIT_REASON = "Take profit"


def candle_time(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


# ── Data Classes ────────────────────────────────────────────────────────────

@dataclass
class SimulationOutcome:
    """Everything the loop produced, before statistics."""
    ledger: Ledger
    balance_curve: List[float] = field(default_factory=list)   # free balance
    equity_curve: List[float] = field(default_factory=list)    # mark-to-market
    candles_processed: int = 0
    terminated_early: bool = False
    termination_reason: Optional[str] = None
    strategy_errors: List[Dict] = field(default_factory=list)
    skipped_entries: Dict[str, int] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def trades(self) -> List[Trade]:
        return self.ledger.trades

    @property
    def final_balance(self) -> float:
        return self.ledger.balance


@dataclass
class _DailyGate:
    """Entry gating by UTC day. Never forces an exit."""
    max_losses: int
    loss_limit: float
    day: Optional[date] = None
    losses: int = 0
    loss_amount: float = 0.0
    start_balance: float = 0.0

    def roll(self, now: datetime, balance: float):
        if now.date() != self.day:
            self.day = now.date()
            self.losses = 0
            self.loss_amount = 0.0
            self.start_balance = balance

    def record(self, trade: Trade):
        if trade.net_profit < 0:
            self.losses += 1
            self.loss_amount += -trade.net_profit

    def allows_entry(self) -> bool:
        if self.max_losses > 0 and self.losses >= self.max_losses:
            return False
        if self.loss_limit > 0:
            if self.start_balance <= 0:
                return False
            if self.loss_amount / self.start_balance >= self.loss_limit:
                return False
        return True


# ── Backtester ──────────────────────────────────────────────────────────────

class Backtester:
    """Runs one strategy against one candle sequence.

    Each ``simulate`` call builds its own Ledger, so one Backtester can be
    reused, but a strategy instance carries pattern memory and should not
    be shared between concurrent runs.
    """

    def __init__(self, config: BacktestConfig,
                 strategy: Optional[BaseStrategy] = None,
                 candle_source: Optional[CandleSource] = None):
        self.config = config
        self.strategy = strategy or create_strategy(config.strategy, config)
        self._candle_source = candle_source

    @property
    def min_history(self) -> int:
        return self.strategy.min_history

    # ── Full run ────────────────────────────────────────────────────────

    def run(self, candles: Optional[Sequence] = None) -> BacktestResult:
        """Fetch (unless ``candles`` is given), simulate, summarise."""
        cfg = self.config
        if candles is None:
            candles = self.fetch_candles()
        else:
            candles = [to_candle(c) for c in candles]

        logger.info(
            f"Backtest {self.strategy.key} on {cfg.symbol} {cfg.timeframe} "
            f"({cfg.backtest_days}d, {cfg.leverage}x {cfg.margin_mode}, "
            f"balance ${cfg.initial_balance:.2f}): {len(candles)} candles"
        )

        outcome = self.simulate(candles)
        stats = compute_statistics(
            outcome.trades,
            cfg.initial_balance,
            outcome.final_balance,
            outcome.ledger.max_drawdown_percent,
            outcome.equity_curve,
            periods_per_year=candles_per_day(cfg.timeframe) * 365,
        )
        result = BacktestResult(config=cfg, strategy_key=self.strategy.key,
                                outcome=outcome, statistics=stats)

        logger.info(
            f"Backtest {self.strategy.key} done: {stats.total_return:+.2f}% return, "
            f"{stats.total_trades} trades, {stats.win_rate:.0f}% win rate, "
            f"{stats.max_drawdown:.1f}% max DD, fees ${stats.total_fees:.2f}"
            + (f" (stopped early: {outcome.termination_reason})"
               if outcome.terminated_early else "")
        )
        return result

    def fetch_candles(self) -> List[Candle]:
        cfg = self.config
        source = self._candle_source or build_candle_source(cfg.exchange_id)
        needed = cfg.backtest_days * candles_per_day(cfg.timeframe)
        logger.info(f"Fetching candles for {cfg.backtest_days} days "
                    f"({needed} candles needed)...")
        candles = fetch_historical_candles(source, cfg.symbol, cfg.timeframe, needed)
        if not candles:
            raise NoCandleData(f"No historical data for {cfg.symbol} {cfg.timeframe}")
        logger.info(f"Loaded {len(candles)} candles")
        return candles

    # ── Simulation loop ─────────────────────────────────────────────────

    def simulate(self, candles: Sequence[Candle]) -> SimulationOutcome:
        if not candles:
            raise NoCandleData("Cannot simulate an empty candle sequence")

        cfg = self.config
        ledger = Ledger(cfg)
        outcome = SimulationOutcome(ledger=ledger)
        daily = _DailyGate(cfg.max_daily_losses, cfg.daily_loss_limit)
        min_history = self.min_history
        progress_every = max(1, len(candles) // 10)
        last: Optional[Candle] = None

        if len(candles) <= min_history:
            logger.warning(f"Only {len(candles)} candles, strategy needs "
                           f"{min_history} of history: nothing to simulate")

        for i in range(min_history, len(candles)):
            if len(ledger.trades) >= cfg.max_trades:
                self._terminate(outcome, "max_trades",
                                f"Maximum trade limit ({cfg.max_trades}) reached")
                break
            if ledger.balance < cfg.min_balance:
                self._terminate(outcome, "balance_floor",
                                f"Balance ${ledger.balance:.2f} below "
                                f"${cfg.min_balance:.2f}")
                break

            candle = candles[i]
            now = candle_time(candle.timestamp)
            if outcome.start_time is None:
                outcome.start_time = now
            daily.roll(now, ledger.account_balance())

            if i % progress_every == 0 and i > min_history:
                logger.info(f"Progress: {i / len(candles) * 100:.0f}% "
                            f"({len(ledger.trades)} trades so far)")

            signal = self._analyze(candles[:i + 1], ledger, candle, outcome)
            trade = self._step(ledger, signal, candle, now, daily, outcome)
            if trade is not None:
                daily.record(trade)

            ledger.update_drawdown()
            outcome.balance_curve.append(ledger.balance)
            outcome.equity_curve.append(ledger.equity(candle.close))
            outcome.candles_processed += 1
            last = candle

        if ledger.has_position and last is not None:
            logger.warning(f"Closing open position at end of period @ {last.close:.4f}")
            ledger.close_position(last.close, END_OF_PERIOD_REASON,
                                  candle_time(last.timestamp))
            ledger.update_drawdown()
            outcome.balance_curve.append(ledger.balance)
            outcome.equity_curve.append(ledger.balance)

        if last is not None:
            outcome.end_time = candle_time(last.timestamp)
        return outcome

    def _analyze(self, window: Sequence[Candle], ledger: Ledger, candle: Candle,
                 outcome: SimulationOutcome) -> Signal:
        try:
            return self.strategy.analyze(window, ledger.snapshot())
        except Exception as e:
            logger.error(f"Strategy {self.strategy.key} failed on candle "
                         f"{candle.timestamp}: {e}")
            outcome.strategy_errors.append({"timestamp": candle.timestamp,
                                            "error": f"{type(e).__name__}: {e}"})
            return Signal.hold(f"Strategy error: {e}")

    def _step(self, ledger: Ledger, signal: Signal, candle: Candle, now: datetime,
              daily: _DailyGate, outcome: SimulationOutcome) -> Optional[Trade]:
        """Apply one candle. At most one close is realised."""
        intrabar = self.config.exit_trigger == "intrabar"

        if ledger.has_position:
            if ledger.check_liquidation(candle.low if intrabar else candle.close):
                return ledger.liquidate(candle.low if intrabar else candle.close, now)
        elif signal.is_buy:
            if daily.allows_entry():
                self._enter(ledger, candle, now, outcome)
            else:
                self._skip(outcome, "daily_limit")
            # No exit on the candle a position was opened at its close.
            return None

        if not ledger.has_position:
            return None

        if signal.is_sell:
            price = signal.price if signal.price is not None else candle.close
            return ledger.close_position(price, signal.reason or "Strategy sell", now)

        pos = ledger.position
        low = candle.low if intrabar else candle.close
        high = candle.high if intrabar else candle.close
        if low <= pos.stop_loss:
            return ledger.close_position(pos.stop_loss, STOP_LOSS_REASON, now)
        if high >= pos.take_profit:
            return ledger.close_position(pos.take_profit, TAKE_PROFIT_REASON, now)
        return None

    def _enter(self, ledger: Ledger, candle: Candle, now: datetime,
               outcome: SimulationOutcome):
        cfg = self.config
        price = candle.close
        exits = self.strategy.calculate_exit_prices(price)
        effective_balance = ledger.balance * cfg.leverage
        size = self.strategy.calculate_position_size(effective_balance, price,
                                                     exits.stop_loss)

        if size.quantity <= 0 or size.position_value < cfg.min_order_value:
            logger.warning(f"Skipping entry @ {price:.4f}: position value "
                           f"${size.position_value:.2f} below minimum "
                           f"${cfg.min_order_value:.2f}")
            self._skip(outcome, "below_min_order")
            return

        try:
            ledger.open_position(price, size.quantity, exits.stop_loss,
                                 exits.take_profit, now)
        except InsufficientBalance as e:
            logger.warning(f"Skipping entry @ {price:.4f}: {e}")
            self._skip(outcome, "insufficient_balance")

    @staticmethod
    def _skip(outcome: SimulationOutcome, reason: str):
        outcome.skipped_entries[reason] = outcome.skipped_entries.get(reason, 0) + 1

    @staticmethod
    def _terminate(outcome: SimulationOutcome, reason: str, message: str):
        logger.warning(f"{message}. Stopping simulation.")
        outcome.terminated_early = True
        outcome.termination_reason = reason
