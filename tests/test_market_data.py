import json

import pytest

from conftest import HOUR_MS, START_MS
from tradesim.services.market_data import (
    BinanceKlineSource,
    Candle,
    candles_per_day,
    fetch_candles_batch,
    fetch_historical_candles,
    load_candles_file,
    remove_duplicate_candles,
    timeframe_to_ms,
    to_candle,
)

NOW_MS = START_MS + 5000 * HOUR_MS


class FakeSource:
    """Serves hourly candles from ``since``; scripted failures per call."""

    def __init__(self, fail_calls=(), overlap=0):
        self.calls = []
        self.fail_calls = set(fail_calls)
        self.overlap = overlap

    def fetch_ohlcv(self, symbol, timeframe, since, limit):
        call = len(self.calls)
        self.calls.append((since, limit))
        if call in self.fail_calls:
            raise ConnectionError(f"network down (call {call})")
        start = NOW_MS - limit * HOUR_MS if since is None else since - self.overlap * HOUR_MS
        end = min(start + limit * HOUR_MS, NOW_MS)
        return [[ts, 1.0, 2.0, 0.5, 1.5, 10.0] for ts in range(start, end, HOUR_MS)]


def _no_sleep():
    waits = []
    return waits, waits.append


def test_timeframe_helpers():
    assert timeframe_to_ms("15m") == 15 * 60 * 1000
    assert timeframe_to_ms("4h") == 4 * HOUR_MS
    assert candles_per_day("1h") == 24
    assert candles_per_day("5m") == 288
    assert candles_per_day("1d") == 1


def test_to_candle_validates_length():
    assert to_candle([1, 2, 3, 4, 5, 6]) == Candle(1, 2.0, 3.0, 4.0, 5.0, 6.0)
    with pytest.raises(ValueError):
        to_candle([1, 2, 3])


def test_remove_duplicates_sorts_ascending():
    rows = [to_candle([t, 1, 1, 1, 1, 1]) for t in (3, 1, 2, 1, 3)]
    assert [c.timestamp for c in remove_duplicate_candles(rows)] == [1, 2, 3]


def test_batch_retry_backs_off_then_succeeds():
    source = FakeSource(fail_calls={0, 1})
    waits, sleep = _no_sleep()
    candles = fetch_candles_batch(source, "SOL/USDT", "1h", None, 10, sleep=sleep)

    assert len(candles) == 10
    assert waits == [2, 4]
    assert len(source.calls) == 3


def test_batch_retry_gives_up_after_three_attempts():
    source = FakeSource(fail_calls={0, 1, 2})
    waits, sleep = _no_sleep()
    with pytest.raises(ConnectionError):
        fetch_candles_batch(source, "SOL/USDT", "1h", None, 10, sleep=sleep)
    assert waits == [2, 4]


def test_single_batch_when_total_fits():
    source = FakeSource()
    candles = fetch_historical_candles(source, "SOL/USDT", "1h", 500, sleep=lambda s: None)
    assert len(candles) == 500
    assert source.calls == [(None, 500)]


def test_multi_batch_stitches_and_truncates():
    source = FakeSource(overlap=3)
    candles = fetch_historical_candles(source, "SOL/USDT", "1h", 2500, batch_size=1000,
                                       now_ms=NOW_MS, sleep=lambda s: None)

    stamps = [c.timestamp for c in candles]
    assert len(candles) == 2500
    assert stamps == sorted(set(stamps))
    assert stamps[-1] == NOW_MS - HOUR_MS
    assert source.calls[0][0] == NOW_MS - 2500 * HOUR_MS


def test_first_batch_failure_is_fatal():
    source = FakeSource(fail_calls={0, 1, 2})
    with pytest.raises(ConnectionError):
        fetch_historical_candles(source, "SOL/USDT", "1h", 2500, batch_size=1000,
                                 now_ms=NOW_MS, sleep=lambda s: None)


def test_later_batch_failure_keeps_what_was_fetched():
    source = FakeSource(fail_calls={1, 2, 3})
    candles = fetch_historical_candles(source, "SOL/USDT", "1h", 2500, batch_size=1000,
                                       now_ms=NOW_MS, sleep=lambda s: None)
    assert len(candles) == 1000


def test_load_candles_file(tmp_path):
    path = tmp_path / "candles.json"
    path.write_text(json.dumps([[2, 1, 2, 0.5, 1.5, 9], [1, 1, 2, 0.5, 1.5, 9]]))
    candles = load_candles_file(path)
    assert [c.timestamp for c in candles] == [1, 2]

    path.write_text(json.dumps({"not": "a list"}))
    with pytest.raises(ValueError):
        load_candles_file(path)


def test_binance_source_falls_back_to_spot():
    class Resp:
        def __init__(self, status, payload):
            self.status_code = status
            self._payload = payload

        def json(self):
            return self._payload

        def raise_for_status(self):
            if self.status_code != 200:
                raise RuntimeError(self.status_code)

    class Session:
        def __init__(self):
            self.headers = {}
            self.urls = []

        def get(self, url, params=None, timeout=None):
            self.urls.append((url, params))
            if "fapi" in url:
                return Resp(400, {})
            return Resp(200, [[1, "1", "2", "0.5", "1.5", "9", 99, "x"]])

    session = Session()
    rows = BinanceKlineSource(session=session).fetch_ohlcv("SOL/USDT:USDT", "1h", 123, 5000)

    assert rows == [[1, "1", "2", "0.5", "1.5", "9"]]
    assert session.urls[0][1] == {"symbol": "SOLUSDT", "interval": "1h",
                                  "limit": 1500, "startTime": 123}
    assert "api.binance.com" in session.urls[1][0]
