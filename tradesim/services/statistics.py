"""
Statistics Aggregator — summary metrics over a finished run.

Pure functions of the trade list, the final balance and the ledger's own
drawdown figure. Nothing here reads ledger state directly, and no metric
divides by zero: empty inputs yield zeros.
"""
import math
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence

from tradesim.services.ledger import Trade

# Profit factor when there are winners but no losers.
PROFIT_FACTOR_NO_LOSSES = 999.0


@dataclass(frozen=True)
class TradeStatistics:
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float                 # percent
    profit_factor: float            # |avg win / avg loss|, see PROFIT_FACTOR_NO_LOSSES
    total_return: float             # percent
    total_profit: float
    total_fees: float
    max_drawdown: float             # percent, from the ledger's high-water mark
    avg_profit: float
    avg_win: float
    avg_loss: float
    avg_duration_minutes: float
    max_consecutive_wins: int
    max_consecutive_losses: int
    liquidations: int
    sharpe_ratio: float
    best_trade: Optional[Trade]
    worst_trade: Optional[Trade]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["best_trade"] = self.best_trade.to_dict() if self.best_trade else None
        data["worst_trade"] = self.worst_trade.to_dict() if self.worst_trade else None
        return data


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def profit_factor(avg_win: float, avg_loss: float, has_wins: bool) -> float:
    """Ratio of average win to average loss magnitude.

    Uses averages, not sums. With no losing trades the ratio is undefined:
    PROFIT_FACTOR_NO_LOSSES if anything was won, else 0.
    """
    if avg_loss != 0:
        return abs(avg_win / avg_loss)
    return PROFIT_FACTOR_NO_LOSSES if has_wins else 0.0


def consecutive_streaks(trades: Sequence[Trade]) -> tuple:
    """Max consecutive wins and losses (break-even trades reset both)."""
    max_w = max_l = cur_w = cur_l = 0
    for t in trades:
        if t.net_profit > 0:
            cur_w += 1
            cur_l = 0
            max_w = max(max_w, cur_w)
        elif t.net_profit < 0:
            cur_l += 1
            cur_w = 0
            max_l = max(max_l, cur_l)
        else:
            cur_w = cur_l = 0
    return max_w, max_l


def sharpe_ratio(equity_curve: Sequence[float], periods_per_year: int = 365,
                 risk_free: float = 0.0) -> float:
    """Annualized Sharpe-like ratio of per-candle equity changes."""
    if len(equity_curve) < 10:
        return 0.0

    returns = []
    for prev, curr in zip(equity_curve, equity_curve[1:]):
        if prev > 0:
            returns.append((curr - prev) / prev)

    if not returns:
        return 0.0

    mean_r = sum(returns) / len(returns)
    var = sum((r - mean_r) ** 2 for r in returns) / len(returns)
    if var <= 0:
        return 0.0
    sharpe = (mean_r - risk_free) / math.sqrt(var) * math.sqrt(periods_per_year)
    return max(min(sharpe, 99.0), -99.0)


def compute_statistics(
    trades: List[Trade],
    initial_balance: float,
    final_balance: float,
    max_drawdown: float,
    equity_curve: Optional[Sequence[float]] = None,
    periods_per_year: int = 365,
) -> TradeStatistics:
    wins = [t for t in trades if t.net_profit > 0]
    losses = [t for t in trades if t.net_profit < 0]
    total = len(trades)

    avg_win = _mean([t.net_profit for t in wins])
    avg_loss = _mean([t.net_profit for t in losses])
    max_w, max_l = consecutive_streaks(trades)

    total_return = 0.0
    if initial_balance > 0:
        total_return = (final_balance - initial_balance) / initial_balance * 100

    return TradeStatistics(
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / total * 100 if total else 0.0,
        profit_factor=profit_factor(avg_win, avg_loss, bool(wins)),
        total_return=total_return,
        total_profit=sum(t.net_profit for t in trades),
        total_fees=sum(t.fees_paid for t in trades),
        max_drawdown=max_drawdown,
        avg_profit=_mean([t.net_profit for t in trades]),
        avg_win=avg_win,
        avg_loss=avg_loss,
        avg_duration_minutes=_mean([t.duration_minutes for t in trades]),
        max_consecutive_wins=max_w,
        max_consecutive_losses=max_l,
        liquidations=sum(1 for t in trades if t.is_liquidation),
        sharpe_ratio=sharpe_ratio(equity_curve or [], periods_per_year),
        best_trade=max(trades, key=lambda t: t.net_profit) if trades else None,
        worst_trade=min(trades, key=lambda t: t.net_profit) if trades else None,
    )
