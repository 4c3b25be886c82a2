"""
Database models for stored backtest runs.
"""
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class BacktestRun(Base):
    """One finished backtest: summary columns plus the full JSON report."""
    __tablename__ = "backtest_runs"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    strategy = Column(String, index=True)
    symbol = Column(String, index=True)
    timeframe = Column(String)
    period_days = Column(Integer)
    margin_mode = Column(String, default="isolated")
    initial_balance = Column(Float)
    leverage = Column(Integer)
    final_balance = Column(Float)
    total_return_pct = Column(Float)
    max_drawdown_pct = Column(Float)
    total_trades = Column(Integer, default=0)
    win_rate = Column(Float, default=0.0)
    profit_factor = Column(Float, default=0.0)
    terminated_early = Column(Boolean, default=False)
    termination_reason = Column(String, nullable=True)
    report = Column(JSON)

    def summary(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "strategy": self.strategy,
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "period_days": self.period_days,
            "margin_mode": self.margin_mode,
            "initial_balance": self.initial_balance,
            "leverage": self.leverage,
            "final_balance": self.final_balance,
            "total_return_pct": self.total_return_pct,
            "max_drawdown_pct": self.max_drawdown_pct,
            "total_trades": self.total_trades,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "terminated_early": self.terminated_early,
            "termination_reason": self.termination_reason,
        }
