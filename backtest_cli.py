#!/usr/bin/env python3
"""
Backtest CLI — run one or many backtests in-process.

Usage:
  python3 backtest_cli.py                              # rsi_ema, SOL/USDT:USDT 1h, 60d
  python3 backtest_cli.py -s scalping -t 5m -p 3 7
  python3 backtest_cli.py -s all --symbol BTC/USDT:USDT ETH/USDT:USDT -p 30
  python3 backtest_cli.py --compare                    # every strategy, same market
  python3 backtest_cli.py --candles-file data.json -s rsi_ema --save
"""
import argparse
import logging
import sys
import time
from typing import List, Optional

from pydantic import ValidationError

from tradesim.config import load_config
from tradesim.services.backtester import Backtester
from tradesim.services.market_data import load_candles_file
from tradesim.services.reporting import save_result_files
from tradesim.services.strategies import STRATEGIES

logger = logging.getLogger("backtest_cli")

EXIT_ALL_FAILED = 1
EXIT_BAD_CONFIG = 2


def format_pct(val, width=8):
    """Percentage with ANSI colour."""
    s = f"{val:+.1f}%"
    if val > 0:
        return f"\033[92m{s:>{width}}\033[0m"  # green
    elif val < 0:
        return f"\033[91m{s:>{width}}\033[0m"  # red
    return f"{s:>{width}}"


def print_result(r: dict):
    """Detailed block for a single run."""
    cfg, perf, stats = r["config"], r["performance"], r["statistics"]
    tm, term = r["trade_metrics"], r["termination"]

    print(f"  ┌─ {r['strategy_name']} | {cfg['symbol']} {cfg['timeframe']} | {cfg['days']}d "
          f"| {cfg['leverage']}x {cfg['margin_mode']}")
    print(f"  │ Return: {format_pct(perf['total_return'])}  (${perf['final_balance']:.2f}, "
          f"P/L ${perf['total_profit_loss']:+.2f})")
    print(f"  │ Fees:   ${perf['total_fees']:.2f}")
    print(f"  │ Trades: {stats['total_trades']}  (W:{stats['winning_trades']} "
          f"L:{stats['losing_trades']} Liq:{stats['liquidations']})")
    print(f"  │ WR: {stats['win_rate']:.1f}%  |  PF: {stats['profit_factor']:.2f}  |  "
          f"Sharpe: {perf['sharpe_ratio']:.2f}")
    print(f"  │ Avg win ${tm['avg_win']:.2f} / avg loss ${tm['avg_loss']:.2f}  |  "
          f"avg duration {tm['avg_duration']:.0f} min")
    print(f"  │ Max DD: {perf['max_drawdown']:.1f}%")
    if term["terminated_early"]:
        print(f"  │ ⚠️  Stopped early: {term['reason']}")
    if term["strategy_errors"]:
        print(f"  │ ⚠️  Strategy errors: {len(term['strategy_errors'])}")
    print(f"  └{'─' * 60}")


def print_compare_table(results: List[dict]):
    """Comparison table for several runs."""
    if not results:
        return

    print()
    print(f"  {'Strategy':<20} {'Symbol':<16} {'TF':>4} {'Days':>4}  {'Return':>8}  "
          f"{'Fees':>6}  {'Trd':>4}  {'WR':>4}  {'PF':>6}  {'DD':>5}  {'Liq':>3}")
    print(f"  {'─' * 95}")

    for r in results:
        cfg, perf, stats = r["config"], r["performance"], r["statistics"]
        name = r["strategy_name"][:18]
        print(f"  {name:<20} {cfg['symbol'][:16]:<16} {cfg['timeframe']:>4} {cfg['days']:>4}  "
              f"{format_pct(perf['total_return'])}  ${perf['total_fees']:>5.1f}  "
              f"{stats['total_trades']:>4}  {stats['win_rate']:>3.0f}%  "
              f"{stats['profit_factor']:>6.2f}  {perf['max_drawdown']:>4.1f}%  "
              f"{stats['liquidations']:>3}")

    print(f"  {'─' * 95}")

    best = max(results, key=lambda x: x["performance"]["total_return"])
    worst = min(results, key=lambda x: x["performance"]["total_return"])
    avg_ret = sum(r["performance"]["total_return"] for r in results) / len(results)
    profitable = sum(1 for r in results if r["performance"]["total_return"] > 0)

    print(f"\n  📊 Summary:")
    print(f"     Best:       {best['strategy_name']} ({best['config']['symbol']} "
          f"{best['config']['days']}d) → {format_pct(best['performance']['total_return'])}")
    print(f"     Worst:      {worst['strategy_name']} ({worst['config']['symbol']} "
          f"{worst['config']['days']}d) → {format_pct(worst['performance']['total_return'])}")
    print(f"     Average:    {format_pct(avg_ret)}")
    print(f"     Profitable: {profitable}/{len(results)} ({profitable / len(results) * 100:.0f}%)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="🚀 Backtest CLI — replay historical candles through a strategy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                    # Default strategy and market from env
  %(prog)s -s scalping -t 5m -p 3 7           # Scalper on 5m candles, 2 periods
  %(prog)s -s all -p 30                       # Every strategy, 30 days
  %(prog)s -b 1000 -l 5 --margin-mode cross   # $1000 balance, 5x cross margin
  %(prog)s --candles-file candles.json        # Offline replay
        """,
    )
    parser.add_argument("-s", "--strategies", nargs="+", default=None,
                        help=f"Strategies to run ({', '.join(STRATEGIES)} or 'all')")
    parser.add_argument("--symbol", nargs="+", default=None,
                        help="Market symbol(s), e.g. SOL/USDT:USDT")
    parser.add_argument("-t", "--timeframe", default=None, help="Candle timeframe (1m, 5m, 1h...)")
    parser.add_argument("-p", "--periods", nargs="+", type=int, default=None,
                        help="Periods in days (e.g. 30 60 90)")
    parser.add_argument("-l", "--leverage", type=int, default=None, help="Leverage")
    parser.add_argument("-b", "--balance", type=float, default=None, help="Initial balance")
    parser.add_argument("--margin-mode", choices=["isolated", "cross"], default=None)
    parser.add_argument("--exchange", default=None,
                        help="ccxt exchange id, or 'binance-rest' for plain Binance klines")
    parser.add_argument("--candles-file", default=None,
                        help="JSON file with [ts, open, high, low, close, volume] rows")
    parser.add_argument("--compare", action="store_true",
                        help="Run every strategy on the same market and print a table")
    parser.add_argument("--save", action="store_true",
                        help="Write the text summary and JSON report under --logs-dir")
    parser.add_argument("--logs-dir", default="logs")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        base = load_config(
            timeframe=args.timeframe,
            leverage=args.leverage,
            initial_balance=args.balance,
            margin_mode=args.margin_mode,
            exchange_id=args.exchange,
        )
    except ValidationError as e:
        print(f"  ❌ Invalid configuration:\n{e}")
        return EXIT_BAD_CONFIG

    strategies = args.strategies or [base.strategy]
    if args.compare or "all" in strategies:
        strategies = list(STRATEGIES)
    unknown = [s for s in strategies if s not in STRATEGIES]
    if unknown:
        print(f"  ❌ Unknown strategy: {', '.join(unknown)}. Available: {', '.join(STRATEGIES)}")
        return EXIT_BAD_CONFIG

    symbols = args.symbol or [base.symbol]
    periods = args.periods or [base.backtest_days]

    candles = None
    if args.candles_file:
        candles = load_candles_file(args.candles_file)
        symbols = symbols[:1]
        periods = periods[:1]

    total_tests = len(strategies) * len(symbols) * len(periods)
    print(f"\n{'═' * 65}")
    print(f"  🚀 BACKTEST CLI")
    print(f"  Strategies: {', '.join(strategies)}")
    print(f"  Symbols:    {', '.join(symbols)}  ({base.timeframe})")
    print(f"  Periods:    {', '.join(str(p) + 'd' for p in periods)}")
    print(f"  Leverage:   {base.leverage}x {base.margin_mode}  |  Balance: ${base.initial_balance:.0f}")
    if candles is not None:
        print(f"  Candles:    {len(candles)} from {args.candles_file}")
    print(f"  Total runs: {total_tests}")
    print(f"{'═' * 65}\n")

    reports = []
    done = 0
    for strategy in strategies:
        for symbol in symbols:
            for period in periods:
                done += 1
                print(f"  [{done}/{total_tests}] {strategy} | {symbol} | {period}d ...",
                      end="", flush=True)
                t0 = time.time()
                try:
                    config = base.model_copy(update={
                        "strategy": strategy, "symbol": symbol, "backtest_days": period,
                    })
                    result = Backtester(config).run(candles)
                except Exception as e:
                    logger.debug("Backtest failed", exc_info=True)
                    print(f" ❌ FAILED: {e} ({time.time() - t0:.1f}s)")
                    continue

                report = result.to_dict()
                reports.append(report)
                print(f" {format_pct(report['performance']['total_return'])}  "
                      f"({report['statistics']['total_trades']} trades, {time.time() - t0:.1f}s)")
                if args.save:
                    log_file, json_file = save_result_files(result, args.logs_dir)
                    print(f"      💾 {json_file}")

    print()
    if len(reports) == 1 and total_tests == 1:
        print_result(reports[0])
    elif reports:
        print_compare_table(reports)
    print()

    if not reports:
        return EXIT_ALL_FAILED
    return 0


if __name__ == "__main__":
    sys.exit(main())
