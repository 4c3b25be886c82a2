"""
Database connection and session management
"""
import logging
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from tradesim.models.database import BacktestRun, Base

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./backtests.db")

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """Create tables if they do not exist."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def save_run(db: Session, result) -> BacktestRun:
    """Persist one BacktestResult and return the stored row."""
    report = result.to_dict()
    cfg = result.config
    stats = result.statistics
    run = BacktestRun(
        strategy=result.strategy_key,
        symbol=cfg.symbol,
        timeframe=cfg.timeframe,
        period_days=cfg.backtest_days,
        margin_mode=cfg.margin_mode,
        initial_balance=cfg.initial_balance,
        leverage=cfg.leverage,
        final_balance=round(result.final_balance, 6),
        total_return_pct=round(stats.total_return, 2),
        max_drawdown_pct=round(stats.max_drawdown, 2),
        total_trades=stats.total_trades,
        win_rate=round(stats.win_rate, 2),
        profit_factor=round(stats.profit_factor, 2),
        terminated_early=result.outcome.terminated_early,
        termination_reason=result.outcome.termination_reason,
        report=report,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info(f"Stored backtest run #{run.id} ({run.strategy} {run.symbol})")
    return run
