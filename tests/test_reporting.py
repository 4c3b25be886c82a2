import json

import pytest

from conftest import ScriptedStrategy, make_candles, make_config
from tradesim.services.backtester import Backtester
from tradesim.services.reporting import RESULTS_LOG, format_summary, save_result_files


@pytest.fixture
def result():
    config = make_config()
    strategy = ScriptedStrategy(config, buys={1}, quantity=0.36)
    return Backtester(config, strategy).run(make_candles([100, 100, 101, 102]))


def test_report_blocks_and_units(result):
    report = result.to_dict()

    assert set(report) >= {"timestamp", "strategy", "config", "performance", "statistics",
                           "trade_metrics", "best_worst", "interpretation",
                           "termination", "trades"}
    assert report["strategy"] == "scripted"
    assert report["config"]["days"] == 60
    assert report["config"]["margin_mode"] == "isolated"

    perf = report["performance"]
    assert perf["final_balance"] == pytest.approx(200.575352)
    # percent units: 0.575352 / 200 -> 0.29%
    assert perf["total_return"] == pytest.approx(0.29)
    assert perf["total_fees"] == pytest.approx(0.0726, abs=1e-4)

    assert report["statistics"]["total_trades"] == 1
    assert report["statistics"]["win_rate"] == 100
    assert report["statistics"]["profit_factor"] == 999.0
    assert report["best_worst"]["best_trade"] == {"profit": 0.58, "profit_percent": 1.6}
    assert report["interpretation"] == {"profitable": True, "good_win_rate": True,
                                        "acceptable_drawdown": True}
    assert report["termination"]["terminated_early"] is False
    assert report["termination"]["candles_processed"] == 3
    assert report["trades"][0]["reason"] == "Take profit"


def test_report_is_json_serialisable(result):
    text = json.dumps(result.to_dict())
    assert json.loads(text)["trades"][0]["exit_price"] == pytest.approx(101.8)


def test_report_without_trades(result):
    assert "trades" not in result.to_dict(include_trades=False)


def test_format_summary(result):
    text = format_summary(result)
    assert "STRATEGY: scripted (scripted)" in text
    assert "Total Trades: 1" in text
    assert "Profitable: YES" in text
    assert "STOPPED EARLY" not in text


def test_save_result_files(result, tmp_path):
    logs_dir = tmp_path / "logs"
    log_file, json_file = save_result_files(result, logs_dir)
    save_result_files(result, logs_dir)

    assert log_file == logs_dir / RESULTS_LOG
    assert log_file.read_text().count("BACKTEST RESULTS") == 2
    assert json_file.name.startswith("backtest-scripted-")
    assert json.loads(json_file.read_text())["statistics"]["total_trades"] == 1
