"""
Main FastAPI application
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tradesim.config import load_config
from tradesim.database import get_db, init_db, save_run
from tradesim.models.database import BacktestRun
from tradesim.services.backtester import Backtester
from tradesim.services.strategies import STRATEGIES, describe_strategies

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup → yield → shutdown."""
    init_db()
    logger.info("Backtest API ready")
    yield
    logger.info("Backtest API stopped")


app = FastAPI(title="tradesim - Candle Replay Backtester", version="1.0.0", lifespan=lifespan)


# Pydantic models for API

class BacktestRequest(BaseModel):
    strategy: str = "rsi_ema"
    symbol: Optional[str] = None
    timeframe: Optional[str] = None
    period_days: Optional[int] = None
    leverage: Optional[int] = None
    initial_balance: Optional[float] = None
    margin_mode: Optional[Literal["isolated", "cross"]] = None
    exchange: Optional[str] = None
    candles: Optional[List[List[float]]] = Field(
        None, description="Inline [timestamp, open, high, low, close, volume] rows"
    )


# API Endpoints

@app.get("/api/health")
def health_check():
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}


@app.get("/api/strategies")
def get_strategies():
    """Available strategies with their history requirement under current config."""
    return {s["key"]: s for s in describe_strategies(load_config())}


@app.post("/api/backtest")
async def run_backtest(req: BacktestRequest, db: Session = Depends(get_db)):
    """Run a backtest simulation. Without inline candles this fetches from the exchange."""
    if req.strategy not in STRATEGIES:
        raise HTTPException(status_code=400, detail=f"Unknown strategy: {req.strategy}")
    if req.period_days is not None and not (1 <= req.period_days <= 365):
        raise HTTPException(status_code=400, detail="Period must be between 1 and 365 days")
    if req.initial_balance is not None and req.initial_balance < 10:
        raise HTTPException(status_code=400, detail="Minimum balance is $10")

    try:
        config = load_config(
            strategy=req.strategy,
            symbol=req.symbol,
            timeframe=req.timeframe,
            backtest_days=req.period_days,
            leverage=req.leverage,
            initial_balance=req.initial_balance,
            margin_mode=req.margin_mode,
            exchange_id=req.exchange,
        )
        backtester = Backtester(config)
        result = await asyncio.to_thread(backtester.run, req.candles)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Backtest failed: {e}")
        raise HTTPException(status_code=500, detail=f"Backtest error: {str(e)}")

    run = save_run(db, result)
    report = result.to_dict()
    report["id"] = run.id
    return report


@app.get("/api/backtests")
def list_backtests(limit: int = 20, db: Session = Depends(get_db)):
    """Most recent stored runs, newest first."""
    limit = max(1, min(limit, 200))
    runs = (db.query(BacktestRun)
            .order_by(BacktestRun.created_at.desc(), BacktestRun.id.desc())
            .limit(limit).all())
    return [r.summary() for r in runs]


@app.get("/api/backtests/{run_id}")
def get_backtest(run_id: int, db: Session = Depends(get_db)):
    run = db.query(BacktestRun).filter(BacktestRun.id == run_id).first()
    if not run:
        raise HTTPException(status_code=404, detail="Backtest not found")
    return {**run.summary(), "report": run.report}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8001")))
