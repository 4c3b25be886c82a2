"""
Run configuration.

A single immutable BacktestConfig is built at setup and handed to the
ledger, the simulation loop and the strategy. Values come from explicit
overrides, then environment variables (.env supported), then defaults.
"""
import os
from typing import Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field


class BacktestConfig(BaseModel):
    """Immutable settings for one backtest run."""
    model_config = ConfigDict(frozen=True)

    # ── Market ──────────────────────────────────────────────────────────
    symbol: str = "SOL/USDT:USDT"
    timeframe: str = "1h"
    backtest_days: int = Field(60, ge=1)
    exchange_id: str = "bybit"
    strategy: str = "rsi_ema"

    # ── Account ─────────────────────────────────────────────────────────
    initial_balance: float = Field(200.0, gt=0)
    leverage: int = Field(2, ge=1)
    margin_mode: Literal["isolated", "cross"] = "isolated"

    # ── Risk management ─────────────────────────────────────────────────
    risk_per_trade: float = Field(0.005, gt=0, le=1)       # fraction of effective balance
    max_position_size: float = Field(0.18, gt=0, le=1)     # cap, fraction of effective balance
    stop_loss_percent: float = Field(0.5, gt=0)            # 0.5 = 0.5%
    take_profit_percent: float = Field(1.8, gt=0)
    max_daily_losses: int = Field(3, ge=0)
    daily_loss_limit: float = Field(0.06, ge=0)            # fraction of balance

    # ── Fees (Binance/Bybit spot 0.1%) ──────────────────────────────────
    maker_fee: float = Field(0.001, ge=0)
    taker_fee: float = Field(0.001, ge=0)

    # ── Simulation safety ───────────────────────────────────────────────
    liquidation_threshold: float = Field(0.9, gt=0, le=1)  # fraction of margin lost
    min_order_value: float = Field(10.0, ge=0)
    min_balance: float = Field(10.0, ge=0)
    max_trades: int = Field(500, ge=1)
    min_history: Optional[int] = Field(None, ge=1)         # None = strategy lookback
    exit_trigger: Literal["close", "intrabar"] = "close"

    # ── RSI + EMA strategy ──────────────────────────────────────────────
    rsi_period: int = Field(14, ge=2)
    rsi_oversold: float = 30
    rsi_overbought: float = 70
    ema_fast_period: int = Field(9, ge=1)
    ema_slow_period: int = Field(21, ge=2)
    volume_multiplier: float = 1.5
    volume_period: int = Field(20, ge=1)
    min_profit_percent: float = 0.5

    # ── Scalping strategy ───────────────────────────────────────────────
    scalp_min_score: int = 4
    scalp_pattern_cooldown: int = Field(10, ge=0)
    scalp_double_tolerance: float = Field(0.003, gt=0)
    scalp_breakeven_trigger: float = 0.3                    # % gain before break-even exit arms


# Environment variable → (field, caster)
_ENV_FIELDS: Dict[str, tuple] = {
    "TRADING_PAIR": ("symbol", str),
    "TIMEFRAME": ("timeframe", str),
    "BACKTEST_DAYS": ("backtest_days", int),
    "EXCHANGE": ("exchange_id", str),
    "STRATEGY": ("strategy", str),
    "INITIAL_BALANCE": ("initial_balance", float),
    "LEVERAGE": ("leverage", int),
    "MARGIN_MODE": ("margin_mode", str),
    "RISK_PER_TRADE": ("risk_per_trade", float),
    "MAX_POSITION_SIZE": ("max_position_size", float),
    "STOP_LOSS_PERCENT": ("stop_loss_percent", float),
    "TAKE_PROFIT_PERCENT": ("take_profit_percent", float),
    "MAKER_FEE": ("maker_fee", float),
    "TAKER_FEE": ("taker_fee", float),
    "MAX_DAILY_LOSSES": ("max_daily_losses", int),
    "DAILY_LOSS_LIMIT": ("daily_loss_limit", float),
    "MIN_BALANCE": ("min_balance", float),
    "LIQUIDATION_THRESHOLD": ("liquidation_threshold", float),
    "MAX_TRADES": ("max_trades", int),
    "SCALP_MIN_SCORE": ("scalp_min_score", int),
    "SCALP_COOLDOWN": ("scalp_pattern_cooldown", int),
    "SCALP_DOUBLE_TOLERANCE": ("scalp_double_tolerance", float),
    "SCALP_BREAKEVEN": ("scalp_breakeven_trigger", float),
}


def load_config(**overrides) -> BacktestConfig:
    """Build a BacktestConfig from env + explicit overrides.

    Overrides whose value is None are ignored so CLI/API callers can pass
    optional arguments straight through. Raises pydantic.ValidationError
    on invalid values.
    """
    load_dotenv()

    values: Dict = {}
    for env_name, (field_name, caster) in _ENV_FIELDS.items():
        raw = os.getenv(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            values[field_name] = caster(raw.strip())
        except ValueError:
            # Let pydantic report the bad value with the field name attached
            values[field_name] = raw.strip()

    values.update({k: v for k, v in overrides.items() if v is not None})
    return BacktestConfig(**values)
