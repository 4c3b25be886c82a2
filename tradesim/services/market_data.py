"""
Market data — historical OHLCV candles for backtesting.

The simulation only needs a finite, time-ascending list of candles. This
module owns getting there: a per-request fetch contract implemented by
exchange clients (ccxt, Binance REST), bounded retry with backoff for a
single batch, and stitching several batches into one deduplicated
sequence truncated to the most recent N candles.
"""
import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Protocol, Sequence

import ccxt.async_support as ccxt_async
import requests

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000          # per-request limit of most exchanges
MAX_FETCH_ATTEMPTS = 3
BATCH_DELAY_S = 0.5        # pause between batches (rate limits)

_UNIT_MS = {
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
}


class NoCandleData(ValueError):
    """No candles could be obtained for the requested market."""


class Candle(NamedTuple):
    """One OHLCV interval: [timestamp(ms), open, high, low, close, volume]."""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class CandleSource(Protocol):
    """Anything that can return one batch of candles, ascending by time."""

    def fetch_ohlcv(self, symbol: str, timeframe: str,
                    since: Optional[int], limit: int) -> List[Sequence]:
        ...


# ── Timeframe helpers ───────────────────────────────────────────────────────

def timeframe_to_ms(timeframe: str) -> int:
    """'15m' → 900000. Unknown units fall back to minutes."""
    value = int(timeframe[:-1] or 1)
    unit = timeframe[-1]
    return value * _UNIT_MS.get(unit, _UNIT_MS["m"])


def candles_per_day(timeframe: str) -> int:
    return max(1, (24 * 60 * 60 * 1000) // timeframe_to_ms(timeframe))


def to_candle(raw: Sequence) -> Candle:
    """Normalise a raw 6-field row (list, tuple or Candle) into a Candle."""
    if len(raw) < 6:
        raise ValueError(f"Candle needs 6 fields, got {len(raw)}: {raw!r}")
    return Candle(int(raw[0]), float(raw[1]), float(raw[2]),
                  float(raw[3]), float(raw[4]), float(raw[5]))


def remove_duplicate_candles(candles: List[Candle]) -> List[Candle]:
    """Drop repeated timestamps (first occurrence wins) and sort ascending."""
    seen = set()
    unique = []
    for candle in candles:
        if candle.timestamp in seen:
            continue
        seen.add(candle.timestamp)
        unique.append(candle)
    unique.sort(key=lambda c: c.timestamp)
    return unique


# ── Batch fetching ──────────────────────────────────────────────────────────

def fetch_candles_batch(
    source: CandleSource,
    symbol: str,
    timeframe: str,
    since: Optional[int],
    limit: int,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Candle]:
    """Fetch a single batch with bounded retry (2s, 4s backoff).

    Re-raises the last error once MAX_FETCH_ATTEMPTS are exhausted.
    """
    for attempt in range(MAX_FETCH_ATTEMPTS):
        try:
            raw = source.fetch_ohlcv(symbol, timeframe, since, limit)
            return [to_candle(row) for row in raw or []]
        except Exception as e:
            if attempt == MAX_FETCH_ATTEMPTS - 1:
                raise
            wait = 2 ** (attempt + 1)
            logger.warning(
                f"Candle fetch failed: {e} "
                f"(attempt {attempt + 1}/{MAX_FETCH_ATTEMPTS}), retrying in {wait}s"
            )
            sleep(wait)
    return []


def fetch_historical_candles(
    source: CandleSource,
    symbol: str,
    timeframe: str,
    total_needed: int,
    batch_size: int = BATCH_SIZE,
    now_ms: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Candle]:
    """Collect ``total_needed`` candles, stitching batches when needed.

    A failure on the first batch is fatal; a failure on a later batch stops
    fetching and keeps what was collected. The result is deduplicated,
    ascending and truncated to the most recent ``total_needed`` candles.
    """
    if total_needed <= batch_size:
        logger.info(f"Fetching {total_needed} candles in single batch...")
        candles = fetch_candles_batch(source, symbol, timeframe, None,
                                      total_needed, sleep=sleep)
        return remove_duplicate_candles(candles)[-total_needed:]

    tf_ms = timeframe_to_ms(timeframe)
    batches = -(-total_needed // batch_size)
    logger.info(f"Fetching {total_needed} candles in {batches} batches...")

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    since = now_ms - total_needed * tf_ms
    all_candles: List[Candle] = []

    for i in range(batches):
        try:
            batch = fetch_candles_batch(source, symbol, timeframe, since,
                                        batch_size, sleep=sleep)
        except Exception as e:
            if not all_candles:
                raise
            logger.warning(
                f"Batch {i + 1}/{batches} failed: {e} — "
                f"continuing with {len(all_candles)} candles fetched so far"
            )
            break

        if not batch:
            logger.warning(f"Batch {i + 1}/{batches} returned no data, stopping fetch")
            break

        all_candles.extend(batch)
        since = batch[-1].timestamp + tf_ms
        logger.info(f"  Batch {i + 1}/{batches}: got {len(batch)} candles "
                    f"(total: {len(all_candles)})")

        if len(all_candles) >= total_needed:
            break
        if i < batches - 1:
            sleep(BATCH_DELAY_S)

    return remove_duplicate_candles(all_candles)[-total_needed:]


def load_candles_file(path) -> List[Candle]:
    """Load candles from a JSON file holding a list of 6-element rows."""
    with open(Path(path), "r") as fh:
        rows = json.load(fh)
    if not isinstance(rows, list):
        raise ValueError(f"{path}: expected a JSON list of candles")
    return remove_duplicate_candles([to_candle(r) for r in rows])


# ── ccxt source ─────────────────────────────────────────────────────────────

def _run_sync(coro):
    """Run an async coroutine from sync code on a dedicated event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class CCXTCandleSource:
    """Public OHLCV data from any ccxt-supported exchange (no API keys)."""

    def __init__(self, exchange_id: str = "bybit", timeout_ms: int = 30000):
        if exchange_id not in ccxt_async.exchanges:
            raise ValueError(
                f"Exchange '{exchange_id}' not supported by ccxt. "
                f"Examples: {', '.join(ccxt_async.exchanges[:10])}..."
            )
        self.exchange_id = exchange_id
        self._timeout_ms = timeout_ms

    def _create_exchange(self):
        klass = getattr(ccxt_async, self.exchange_id)
        return klass({"enableRateLimit": True, "timeout": self._timeout_ms})

    async def _fetch(self, symbol, timeframe, since, limit):
        exchange = self._create_exchange()
        try:
            return await exchange.fetch_ohlcv(symbol, timeframe, since, limit)
        finally:
            await exchange.close()

    def fetch_ohlcv(self, symbol: str, timeframe: str,
                    since: Optional[int], limit: int) -> List[Sequence]:
        return _run_sync(self._fetch(symbol, timeframe, since, limit))


# ── Binance REST source ─────────────────────────────────────────────────────

class BinanceKlineSource:
    """Binance Futures klines over plain REST, with spot fallback.

    Accepts ccxt-style symbols ("BTC/USDT:USDT") as well as raw Binance
    symbols ("BTCUSDT").
    """

    FUTURES_URL = "https://fapi.binance.com/fapi/v1"
    SPOT_URL = "https://api.binance.com/api/v3"
    MAX_LIMIT = 1500

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = 20):
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json",
                                      "User-Agent": "tradesim/1.0"})
        self._timeout = timeout

    @staticmethod
    def binance_symbol(symbol: str) -> str:
        return symbol.split(":")[0].replace("/", "").upper()

    def fetch_ohlcv(self, symbol: str, timeframe: str,
                    since: Optional[int], limit: int) -> List[Sequence]:
        params = {"symbol": self.binance_symbol(symbol), "interval": timeframe,
                  "limit": min(limit, self.MAX_LIMIT)}
        if since is not None:
            params["startTime"] = int(since)

        resp = self._session.get(f"{self.FUTURES_URL}/klines", params=params,
                                 timeout=self._timeout)
        if resp.status_code != 200:
            resp = self._session.get(f"{self.SPOT_URL}/klines", params=params,
                                     timeout=self._timeout)
        resp.raise_for_status()
        return [k[:6] for k in resp.json()]


def build_candle_source(exchange_id: str) -> CandleSource:
    """'binance-rest' → BinanceKlineSource, anything else → ccxt exchange id."""
    if exchange_id == "binance-rest":
        return BinanceKlineSource()
    return CCXTCandleSource(exchange_id)
