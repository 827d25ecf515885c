"""
Session State - Per-session aggregates and reporting statistics
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional


def trading_day_of(timestamp: float) -> date:
    """Local calendar date of a wall-clock timestamp"""
    return datetime.fromtimestamp(timestamp).date()


@dataclass
class SessionState:
    """Running totals for one trading session"""
    total_profit: float = 0.0
    daily_profit: float = 0.0
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    recovery_attempts: int = 0
    trades_today: int = 0
    total_trades: int = 0
    last_trade_timestamp: Optional[float] = None
    trading_day: Optional[date] = None

    def record_outcome(self, won: bool, profit: float, now: float) -> None:
        self.total_profit += profit
        self.daily_profit += profit
        self.trades_today += 1
        self.total_trades += 1
        self.last_trade_timestamp = now
        if won:
            self.consecutive_wins += 1
            self.consecutive_losses = 0
        else:
            self.consecutive_losses += 1
            self.consecutive_wins = 0

    def roll_over_if_new_day(self, now: float) -> bool:
        """Reset daily counters when the calendar date has moved on"""
        today = trading_day_of(now)
        if self.trading_day is None:
            self.trading_day = today
            return False
        if today == self.trading_day:
            return False
        self.trading_day = today
        self.trades_today = 0
        self.daily_profit = 0.0
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["trading_day"] = self.trading_day.isoformat() if self.trading_day else None
        return data


@dataclass
class Statistics:
    """Reporting only; decisions never read these"""
    total_wins: int = 0
    total_losses: int = 0
    sequences_completed: int = 0
    max_win_streak: int = 0
    max_loss_streak: int = 0
    best_sequence_profit: float = 0.0
    worst_sequence_loss: float = 0.0
    sequence_history: list = field(default_factory=list)

    def record_outcome(self, won: bool, session: SessionState) -> None:
        if won:
            self.total_wins += 1
            self.max_win_streak = max(self.max_win_streak, session.consecutive_wins)
        else:
            self.total_losses += 1
            self.max_loss_streak = max(self.max_loss_streak, session.consecutive_losses)

    def record_completed_sequence(self, profit: float, label: str) -> None:
        self.sequences_completed += 1
        self.best_sequence_profit = max(self.best_sequence_profit, profit)
        self.sequence_history.append({"sequence": label, "profit": round(profit, 2)})
        # Keep the last 100 completed sequences
        if len(self.sequence_history) > 100:
            del self.sequence_history[0]

    def record_abandoned_sequence(self, profit: float) -> None:
        self.worst_sequence_loss = min(self.worst_sequence_loss, profit)

    @property
    def win_rate(self) -> float:
        total = self.total_wins + self.total_losses
        return (self.total_wins / total * 100) if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["win_rate"] = round(self.win_rate, 1)
        return data
