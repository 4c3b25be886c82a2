"""
Backtest report — the result artifact of one run.

One JSON object per run with config / performance / statistics /
trade_metrics / best_worst / interpretation / termination blocks.
Percentages are expressed as 12.34, never 0.1234.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from tradesim.config import BacktestConfig
from tradesim.services.statistics import TradeStatistics
from tradesim.services.strategies import STRATEGIES

logger = logging.getLogger(__name__)

RESULTS_LOG = "backtest-results.log"


def _r(value: float, digits: int = 2) -> float:
    return round(float(value), digits)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class BacktestResult:
    """Aggregate results of a backtest run."""
    config: BacktestConfig
    strategy_key: str
    outcome: Any                     # backtester.SimulationOutcome
    statistics: TradeStatistics
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def strategy_name(self) -> str:
        cfg = STRATEGIES.get(self.strategy_key)
        return cfg.name if cfg else self.strategy_key

    @property
    def final_balance(self) -> float:
        return self.outcome.final_balance

    def to_dict(self, include_trades: bool = True) -> Dict:
        cfg = self.config
        stats = self.statistics
        outcome = self.outcome

        def trade_summary(trade):
            if trade is None:
                return None
            return {"profit": _r(trade.net_profit),
                    "profit_percent": _r(trade.profit_percent)}

        report = {
            "timestamp": self.created_at.isoformat(),
            "strategy": self.strategy_key,
            "strategy_name": self.strategy_name,
            "config": {
                "symbol": cfg.symbol,
                "timeframe": cfg.timeframe,
                "days": cfg.backtest_days,
                "initial_balance": cfg.initial_balance,
                "leverage": cfg.leverage,
                "margin_mode": cfg.margin_mode,
                "risk_per_trade": cfg.risk_per_trade,
                "max_position_size": cfg.max_position_size,
                "stop_loss_percent": cfg.stop_loss_percent,
                "take_profit_percent": cfg.take_profit_percent,
                "maker_fee": cfg.maker_fee,
                "taker_fee": cfg.taker_fee,
            },
            "performance": {
                "final_balance": _r(outcome.final_balance, 6),
                "total_return": _r(stats.total_return),
                "total_profit_loss": _r(stats.total_profit),
                "total_fees": _r(stats.total_fees, 4),
                "max_drawdown": _r(stats.max_drawdown),
                "sharpe_ratio": _r(stats.sharpe_ratio, 3),
            },
            "statistics": {
                "total_trades": stats.total_trades,
                "winning_trades": stats.winning_trades,
                "losing_trades": stats.losing_trades,
                "win_rate": _r(stats.win_rate),
                "profit_factor": _r(stats.profit_factor),
                "liquidations": stats.liquidations,
                "max_consecutive_wins": stats.max_consecutive_wins,
                "max_consecutive_losses": stats.max_consecutive_losses,
            },
            "trade_metrics": {
                "avg_profit": _r(stats.avg_profit),
                "avg_win": _r(stats.avg_win),
                "avg_loss": _r(stats.avg_loss),
                "avg_duration": _r(stats.avg_duration_minutes, 0),
            },
            "best_worst": {
                "best_trade": trade_summary(stats.best_trade),
                "worst_trade": trade_summary(stats.worst_trade),
            },
            "interpretation": {
                "profitable": stats.total_return > 0,
                "good_win_rate": stats.win_rate >= 50,
                "acceptable_drawdown": stats.max_drawdown <= 20,
            },
            "termination": {
                "terminated_early": outcome.terminated_early,
                "reason": outcome.termination_reason,
                "candles_processed": outcome.candles_processed,
                "start": _iso(outcome.start_time),
                "end": _iso(outcome.end_time),
                "skipped_entries": dict(outcome.skipped_entries),
                "strategy_errors": list(outcome.strategy_errors),
            },
        }
        if include_trades:
            report["trades"] = [t.to_dict() for t in outcome.trades]
        return report


# ── Text summary ────────────────────────────────────────────────────────────

def _yes_no(flag: bool) -> str:
    return "YES" if flag else "NO"


def format_summary(result: BacktestResult) -> str:
    """Human-readable block appended to the results log."""
    d = result.to_dict(include_trades=False)
    perf, stats, tm = d["performance"], d["statistics"], d["trade_metrics"]
    best, worst = d["best_worst"]["best_trade"], d["best_worst"]["worst_trade"]
    interp, term = d["interpretation"], d["termination"]
    rule = "=" * 80

    lines = [
        rule,
        f"BACKTEST RESULTS - {d['timestamp']}",
        rule,
        "",
        f"STRATEGY: {d['strategy_name']} ({d['strategy']})",
        "",
        "CONFIG:",
        f"  Symbol: {d['config']['symbol']}",
        f"  Timeframe: {d['config']['timeframe']}",
        f"  Period: {d['config']['days']} days",
        f"  Initial Balance: {d['config']['initial_balance']} USDT",
        f"  Leverage: {d['config']['leverage']}x ({d['config']['margin_mode']})",
        "",
        "PERFORMANCE:",
        f"  Final Balance: {perf['final_balance']:.2f} USDT",
        f"  Total Return: {perf['total_return']}%",
        f"  Total P/L: {perf['total_profit_loss']} USDT",
        f"  Total Fees: {perf['total_fees']:.2f} USDT",
        f"  Max Drawdown: {perf['max_drawdown']}%",
        f"  Sharpe Ratio: {perf['sharpe_ratio']}",
        "",
        "STATISTICS:",
        f"  Total Trades: {stats['total_trades']}",
        f"  Winning: {stats['winning_trades']}",
        f"  Losing: {stats['losing_trades']}",
        f"  Win Rate: {stats['win_rate']}%",
        f"  Profit Factor: {stats['profit_factor']}",
        f"  Liquidations: {stats['liquidations']}",
        "",
        "TRADE METRICS:",
        f"  Avg Profit: {tm['avg_profit']} USDT",
        f"  Avg Win: {tm['avg_win']} USDT",
        f"  Avg Loss: {tm['avg_loss']} USDT",
        f"  Avg Duration: {tm['avg_duration']:.0f} minutes",
        "",
        "BEST/WORST:",
    ]
    if best:
        lines.append(f"  Best Trade: {best['profit']} USDT ({best['profit_percent']}%)")
        lines.append(f"  Worst Trade: {worst['profit']} USDT ({worst['profit_percent']}%)")
    else:
        lines.append("  No trades")
    lines += [
        "",
        "INTERPRETATION:",
        f"  Profitable: {_yes_no(interp['profitable'])}",
        f"  Good Win Rate: {_yes_no(interp['good_win_rate'])}",
        f"  Safe Drawdown: {_yes_no(interp['acceptable_drawdown'])}",
    ]
    if term["terminated_early"]:
        lines += ["", f"STOPPED EARLY: {term['reason']}"]
    if term["strategy_errors"]:
        lines += ["", f"STRATEGY ERRORS: {len(term['strategy_errors'])}"]
    lines += ["", rule, ""]
    return "\n".join(lines)


def save_result_files(result: BacktestResult, logs_dir="logs") -> Tuple[Path, Path]:
    """Append the text summary to the results log and write a JSON file.

    Returns (log_path, json_path).
    """
    logs_path = Path(logs_dir)
    logs_path.mkdir(parents=True, exist_ok=True)

    log_file = logs_path / RESULTS_LOG
    with open(log_file, "a", encoding="utf-8") as fh:
        fh.write(format_summary(result) + "\n")

    stamp = result.created_at.strftime("%Y-%m-%dT%H-%M-%S-%f")
    json_file = logs_path / f"backtest-{result.strategy_key}-{stamp}.json"
    with open(json_file, "w", encoding="utf-8") as fh:
        json.dump(result.to_dict(), fh, indent=2)

    logger.info(f"Results saved to {log_file} and {json_file}")
    return log_file, json_file
