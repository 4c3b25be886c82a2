"""
Strategy Engine — builds the strategy instance for a run.

Strategies keep per-run pattern memory, so every backtest gets a fresh
instance instead of a shared one.
"""
import logging
from typing import Dict, Type

from tradesim.config import BacktestConfig
from tradesim.services.strategies.base import BaseStrategy
from tradesim.services.strategies.models import STRATEGIES
from tradesim.services.strategies.rsi_ema import RsiEmaStrategy
from tradesim.services.strategies.scalper import ScalpingStrategy

logger = logging.getLogger(__name__)

STRATEGY_CLASSES: Dict[str, Type[BaseStrategy]] = {
    "rsi_ema": RsiEmaStrategy,
    "scalping": ScalpingStrategy,
}


def create_strategy(key: str, config: BacktestConfig) -> BaseStrategy:
    """Instantiate strategy ``key``. Unknown keys raise ValueError.

    Constructor errors propagate unchanged; they abort the run.
    """
    klass = STRATEGY_CLASSES.get(key)
    if klass is None:
        raise ValueError(
            f"Unknown strategy '{key}'. Available: {', '.join(sorted(STRATEGIES))}"
        )
    strategy = klass(config)
    logger.debug(f"Created strategy {key} (min history {strategy.min_history})")
    return strategy


def describe_strategies(config: BacktestConfig) -> list:
    """Registry listing with each strategy's lookback under ``config``."""
    listing = []
    for key, cfg in STRATEGIES.items():
        listing.append({
            "key": cfg.key,
            "name": cfg.name,
            "description": cfg.description,
            "style": cfg.style,
            "min_history": STRATEGY_CLASSES[key](config).min_history,
        })
    return listing
