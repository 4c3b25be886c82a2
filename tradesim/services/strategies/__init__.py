"""
Strategies Package — re-exports all public symbols.

External code can do:
    from tradesim.services.strategies import create_strategy, Signal, STRATEGIES, ...
"""
from tradesim.services.strategies.models import (
    ExitPrices,
    PositionSize,
    Signal,
    StrategyConfig,
    STRATEGIES,
)
from tradesim.services.strategies.indicators import Indicators
from tradesim.services.strategies.base import BaseStrategy
from tradesim.services.strategies.rsi_ema import RsiEmaStrategy
from tradesim.services.strategies.scalper import PatternMemory, ScalpingStrategy
from tradesim.services.strategies.engine import (
    STRATEGY_CLASSES,
    create_strategy,
    describe_strategies,
)

__all__ = [
    "ExitPrices",
    "PositionSize",
    "Signal",
    "StrategyConfig",
    "STRATEGIES",
    "Indicators",
    "BaseStrategy",
    "RsiEmaStrategy",
    "PatternMemory",
    "ScalpingStrategy",
    "STRATEGY_CLASSES",
    "create_strategy",
    "describe_strategies",
]
