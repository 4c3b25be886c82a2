"""
Ledger — single authority for money movement in a backtest.

Owns free balance, the (at most one) open position, the append-only trade
history and the peak / drawdown high-water marks. Every operation
validates up front and then mutates in one step; nothing is ever rolled
back.

Margin modes:
  • isolated — margin + entry fee leave ``balance`` when the position opens,
    margin comes back (plus P/L, minus exit fee) when it closes.
  • cross    — ``balance`` is untouched while the position is open; the
    full net result (P/L minus both fees) is settled at close.
Either way ``final balance == initial + sum(trade.net_profit)``.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional

from tradesim.config import BacktestConfig

logger = logging.getLogger(__name__)

LIQUIDATION_REASON = "LIQUIDATION"


class LedgerError(Exception):
    """Base class for ledger misuse."""


class InsufficientBalance(LedgerError):
    """Free balance cannot cover margin + entry fee."""

    def __init__(self, balance: float, required: float):
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient balance: have {balance:.2f}, need {required:.2f} (margin + entry fee)"
        )


class PositionAlreadyOpen(LedgerError):
    """Single-position model: a second open was attempted."""


class NoOpenPosition(LedgerError):
    """Close / liquidation requested with nothing open."""


@dataclass(frozen=True)
class Position:
    """Open position snapshot. Strategies only ever see this frozen copy."""
    entry_price: float
    quantity: float
    stop_loss: float
    take_profit: float
    entry_time: datetime
    position_value_at_entry: float
    margin_used: float
    leverage: int
    entry_fee_paid: float
    margin_mode: str = "isolated"

    def unrealized_pnl(self, price: float) -> float:
        return self.quantity * price - self.position_value_at_entry


@dataclass(frozen=True)
class Trade:
    """Closed-position record. Never mutated after creation."""
    entry_price: float
    exit_price: float
    quantity: float
    gross_profit: float
    net_profit: float
    profit_percent: float
    reason: str
    entry_time: datetime
    exit_time: datetime
    duration_minutes: float
    fees_paid: float
    margin_used: float = 0.0
    leverage: int = 1

    @property
    def is_liquidation(self) -> bool:
        return self.reason == LIQUIDATION_REASON

    def to_dict(self) -> dict:
        return {
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "quantity": round(self.quantity, 8),
            "gross_profit": round(self.gross_profit, 6),
            "net_profit": round(self.net_profit, 6),
            "profit_percent": round(self.profit_percent, 4),
            "reason": self.reason,
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "duration_minutes": round(self.duration_minutes, 2),
            "fees_paid": round(self.fees_paid, 6),
            "margin_used": round(self.margin_used, 6),
            "leverage": self.leverage,
        }


class Ledger:
    """Balance, position and trade history for one simulation run.

    Not shared between runs: every backtest builds its own Ledger.
    """

    def __init__(self, config: BacktestConfig):
        self._config = config
        self.initial_balance: float = config.initial_balance
        self.balance: float = config.initial_balance
        self.peak_balance: float = config.initial_balance
        self.max_drawdown_percent: float = 0.0
        self.trades: List[Trade] = []
        self._position: Optional[Position] = None

    # ── Queries ─────────────────────────────────────────────────────────

    @property
    def position(self) -> Optional[Position]:
        return self._position

    @property
    def has_position(self) -> bool:
        return self._position is not None

    def snapshot(self) -> Optional[Position]:
        """Copy of the open position handed to the strategy."""
        return replace(self._position) if self._position else None

    def account_balance(self) -> float:
        """Free balance plus margin escrowed by an open isolated position."""
        pos = self._position
        if pos is not None and pos.margin_mode == "isolated":
            return self.balance + pos.margin_used
        return self.balance

    def equity(self, price: float) -> float:
        """Mark-to-market account value at ``price``, entry fee already paid.

        Same value in isolated and cross mode for the same position.
        """
        pos = self._position
        if pos is None:
            return self.balance
        equity = self.account_balance() + pos.unrealized_pnl(price)
        if pos.margin_mode != "isolated":
            equity -= pos.entry_fee_paid
        return equity

    # ── Open ────────────────────────────────────────────────────────────

    def open_position(
        self,
        entry_price: float,
        quantity: float,
        stop_loss: float,
        take_profit: float,
        entry_time: datetime,
        leverage: Optional[int] = None,
        margin_mode: Optional[str] = None,
    ) -> Position:
        """Open the single position; entry fee charged at the maker rate.

        Raises PositionAlreadyOpen / InsufficientBalance before touching
        the balance.
        """
        if self._position is not None:
            raise PositionAlreadyOpen(
                f"Position already open at {self._position.entry_price}"
            )
        if entry_price <= 0 or quantity <= 0:
            raise ValueError(f"Invalid order: price={entry_price}, quantity={quantity}")

        leverage = leverage or self._config.leverage
        margin_mode = margin_mode or self._config.margin_mode

        position_value = quantity * entry_price
        margin_required = position_value / leverage
        entry_fee = position_value * self._config.maker_fee

        if self.balance < margin_required + entry_fee:
            raise InsufficientBalance(self.balance, margin_required + entry_fee)

        if margin_mode == "isolated":
            self.balance -= margin_required + entry_fee

        self._position = Position(
            entry_price=entry_price,
            quantity=quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            entry_time=entry_time,
            position_value_at_entry=position_value,
            margin_used=margin_required,
            leverage=leverage,
            entry_fee_paid=entry_fee,
            margin_mode=margin_mode,
        )
        logger.debug(
            f"BUY {quantity:.6f} @ {entry_price:.4f} value={position_value:.2f} "
            f"margin={margin_required:.2f} fee={entry_fee:.4f} {leverage}x {margin_mode}"
        )
        return self._position

    # ── Close ───────────────────────────────────────────────────────────

    def close_position(
        self,
        exit_price: float,
        reason: str,
        exit_time: datetime,
        taker_fee_rate: Optional[float] = None,
    ) -> Trade:
        """Close at ``exit_price``; exit fee charged at the taker rate.

        Isolated: margin + gross P/L - exit fee returns to balance (the entry
        fee was debited at open). Cross: net P/L is settled in one step.
        """
        pos = self._position
        if pos is None:
            raise NoOpenPosition(f"Cannot close ({reason}): no open position")

        if taker_fee_rate is None:
            taker_fee_rate = self._config.taker_fee

        exit_value = pos.quantity * exit_price
        gross_profit = exit_value - pos.position_value_at_entry
        exit_fee = exit_value * taker_fee_rate
        total_fees = pos.entry_fee_paid + exit_fee
        net_profit = gross_profit - total_fees

        if pos.margin_mode == "isolated":
            self.balance += pos.margin_used + gross_profit - exit_fee
        else:
            self.balance += net_profit

        trade = self._record(pos, exit_price, gross_profit, net_profit,
                             net_profit / pos.position_value_at_entry * 100,
                             reason, exit_time, total_fees)
        logger.debug(
            f"SELL @ {exit_price:.4f} net={net_profit:+.4f} "
            f"({trade.profit_percent:+.2f}%) fees={total_fees:.4f} reason={reason}"
        )
        return trade

    # ── Liquidation ─────────────────────────────────────────────────────

    def check_liquidation(self, current_price: float) -> bool:
        """True once unrealized loss reaches the configured share of margin."""
        pos = self._position
        if pos is None:
            return False
        threshold = -pos.margin_used * self._config.liquidation_threshold
        return pos.unrealized_pnl(current_price) <= threshold

    def liquidate(self, current_price: float, exit_time: datetime) -> Trade:
        """Forfeit the whole margin. Loss = margin + entry fee, -100%."""
        pos = self._position
        if pos is None:
            raise NoOpenPosition("Cannot liquidate: no open position")

        loss = pos.margin_used + pos.entry_fee_paid
        if pos.margin_mode == "cross":
            self.balance -= loss

        trade = self._record(pos, current_price, -pos.margin_used, -loss, -100.0,
                             LIQUIDATION_REASON, exit_time, pos.entry_fee_paid)
        logger.warning(
            f"LIQUIDATION at {current_price:.4f} ({pos.leverage}x): "
            f"lost margin {pos.margin_used:.2f} + fee {pos.entry_fee_paid:.4f}"
        )
        return trade

    # ── Drawdown ────────────────────────────────────────────────────────

    def update_drawdown(self) -> float:
        """Refresh peak and max drawdown from the current balance."""
        if self.balance > self.peak_balance:
            self.peak_balance = self.balance
        if self.peak_balance > 0:
            drawdown = (self.peak_balance - self.balance) / self.peak_balance * 100
            if drawdown > self.max_drawdown_percent:
                self.max_drawdown_percent = drawdown
        return self.max_drawdown_percent

    # ── Internal ────────────────────────────────────────────────────────

    def _record(self, pos: Position, exit_price: float, gross_profit: float,
                net_profit: float, profit_percent: float, reason: str,
                exit_time: datetime, fees: float) -> Trade:
        trade = Trade(
            entry_price=pos.entry_price,
            exit_price=exit_price,
            quantity=pos.quantity,
            gross_profit=gross_profit,
            net_profit=net_profit,
            profit_percent=profit_percent,
            reason=reason,
            entry_time=pos.entry_time,
            exit_time=exit_time,
            duration_minutes=(exit_time - pos.entry_time).total_seconds() / 60,
            fees_paid=fees,
            margin_used=pos.margin_used,
            leverage=pos.leverage,
        )
        self.trades.append(trade)
        self._position = None
        return trade
