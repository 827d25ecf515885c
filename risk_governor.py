"""
Risk Governor - Circuit breakers and rapid-loss detection

Independent of the stake sequence: it can veto trading on its own. Policy
violations come back as result objects; only bad inputs (negative or
non-finite amounts) raise.

Features:
- Loss ceilings: cumulative, daily, consecutive and share of balance
- Safety mode with cooldown after a breaker trips
- Sliding-window rapid-loss detection with exponential backoff cooldowns
- Balance validation before a stake is committed
"""

import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from errors import InvariantViolation
from strategy_config import CircuitBreakerConfig

logger = logging.getLogger(__name__)


@dataclass
class RiskState:
    tripped: bool = False
    trip_reason: str = ""
    trip_reasons: List[str] = field(default_factory=list)
    trip_timestamp: float = 0.0
    in_safety_mode: bool = False
    safety_reason: str = ""
    safety_until: float = 0.0
    recent_losses: Deque[Tuple[float, float]] = field(default_factory=deque)
    cumulative_loss: float = 0.0
    daily_loss: float = 0.0
    consecutive_losses: int = 0
    rapid_trigger_count: int = 0
    rapid_cooldown_until: float = 0.0


@dataclass(frozen=True)
class CircuitBreakerResult:
    blocked: bool
    reason: str = ""
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BalanceCheck:
    valid: bool
    reasons: Tuple[str, ...] = ()
    metrics: Dict[str, float] = field(default_factory=dict)


def _check_amount(name: str, amount: float) -> float:
    if amount is None or not math.isfinite(amount) or amount < 0:
        raise InvariantViolation(f"{name} must be a non-negative finite number, got {amount}")
    return float(amount)


class RiskGovernor:
    """
    Safety layer for one session.

    The clock is injected so cooldowns and windows can be driven in tests.
    """

    def __init__(self, config: CircuitBreakerConfig, base_stake: float,
                 min_balance_reserve: Optional[float] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.base_stake = base_stake
        if min_balance_reserve is None:
            min_balance_reserve = config.min_balance_reserve
        self.min_balance_reserve = (
            min_balance_reserve if min_balance_reserve is not None else base_stake * 3
        )
        self._clock = clock
        self.state = RiskState()

    # ---- recording ----

    def record_loss(self, amount: float) -> None:
        """Record a losing trade; amount is the absolute loss"""
        amount = _check_amount("Loss amount", amount)
        now = self._clock()
        self.state.cumulative_loss += amount
        self.state.daily_loss += amount
        self.state.consecutive_losses += 1
        self.state.recent_losses.append((now, amount))

    def record_rapid_loss(self, amount: float) -> None:
        """Add a loss to the rolling window without touching the loss totals"""
        amount = _check_amount("Loss amount", amount)
        self.state.recent_losses.append((self._clock(), amount))

    def record_win(self, profit: float) -> None:
        profit = _check_amount("Profit", profit)
        self.state.consecutive_losses = 0
        self.state.cumulative_loss = max(0.0, self.state.cumulative_loss - profit)

    def roll_day(self) -> None:
        self.state.daily_loss = 0.0

    # ---- rapid losses ----

    def _prune_window(self, now: float) -> None:
        window_start = now - self.config.rapid_loss_time_window
        losses = self.state.recent_losses
        while losses and losses[0][0] < window_start:
            losses.popleft()

    def check_rapid_losses(self) -> bool:
        """True when the window holds at least rapid_loss_threshold losses"""
        now = self._clock()
        self._prune_window(now)
        detected = len(self.state.recent_losses) >= self.config.rapid_loss_threshold
        if detected and not self._rapid_cooldown_active(now):
            self.state.rapid_trigger_count += 1
            cooldown = min(
                self.config.cooldown_period
                * self.config.rapid_loss_cooldown_multiplier ** (self.state.rapid_trigger_count - 1),
                self.config.max_rapid_loss_cooldown,
            )
            self.state.rapid_cooldown_until = now + cooldown
            logger.warning(
                f"Rapid losses detected: {len(self.state.recent_losses)} in "
                f"{self.config.rapid_loss_time_window:.0f}s, cooling down {cooldown:.0f}s "
                f"(trigger #{self.state.rapid_trigger_count})"
            )
        return detected

    def _rapid_cooldown_active(self, now: float) -> bool:
        return now < self.state.rapid_cooldown_until

    def in_rapid_loss_cooldown(self) -> bool:
        now = self._clock()
        if self.state.rapid_cooldown_until == 0.0:
            return False
        if self._rapid_cooldown_active(now):
            return True
        # Cooldown over: start counting from a clean window
        self.state.rapid_cooldown_until = 0.0
        self.state.recent_losses.clear()
        logger.info("Rapid loss cooldown expired")
        return False

    def rapid_loss_cooldown_remaining(self) -> float:
        return max(0.0, self.state.rapid_cooldown_until - self._clock())

    # ---- circuit breakers ----

    def _safety_mode_active(self, now: float) -> bool:
        if not self.state.in_safety_mode:
            return False
        if now < self.state.safety_until:
            return True
        logger.info(f"Safety mode cooldown elapsed ({self.state.safety_reason})")
        self.state.in_safety_mode = False
        self.state.tripped = False
        return False

    def check_circuit_breakers(self, current_balance: Optional[float] = None) -> CircuitBreakerResult:
        """
        Evaluate every breaker.

        While safety mode is active the result stays blocked with the first
        reason. A fresh trip records the reasons and enters safety mode.
        """
        now = self._clock()
        if self._safety_mode_active(now):
            return CircuitBreakerResult(True, self.state.trip_reason, tuple(self.state.trip_reasons))

        if current_balance is not None:
            current_balance = _check_amount("Balance", current_balance)

        cfg = self.config
        s = self.state
        reasons: List[str] = []
        if s.daily_loss > cfg.max_daily_loss:
            reasons.append("daily_loss_limit")
        if s.cumulative_loss > cfg.max_absolute_loss:
            reasons.append("absolute_loss_limit")
        if s.consecutive_losses > cfg.max_consecutive_losses:
            reasons.append("max_consecutive_losses")
        if current_balance is not None and s.cumulative_loss > cfg.max_balance_percentage_loss * current_balance:
            reasons.append("balance_percentage_loss")

        if not reasons:
            return CircuitBreakerResult(False)

        s.tripped = True
        s.trip_reason = reasons[0]
        s.trip_reasons = reasons
        s.trip_timestamp = now
        self.enter_safety_mode(reasons[0])
        logger.error(
            f"Circuit breaker tripped: {', '.join(reasons)} "
            f"(cumulative {s.cumulative_loss:.2f}, daily {s.daily_loss:.2f}, "
            f"consecutive {s.consecutive_losses})"
        )
        return CircuitBreakerResult(True, reasons[0], tuple(reasons))

    def enter_safety_mode(self, reason: str, cooldown: Optional[float] = None) -> None:
        now = self._clock()
        s = self.state
        s.in_safety_mode = True
        s.safety_reason = reason
        if not s.tripped:
            s.trip_timestamp = now
            s.trip_reason = reason
        s.safety_until = now + (cooldown if cooldown is not None else self.config.cooldown_period)
        logger.warning(f"Entering safety mode: {reason} for {s.safety_until - now:.0f}s")

    def cooldown_remaining(self) -> float:
        if not self.state.in_safety_mode:
            return 0.0
        return max(0.0, self.state.safety_until - self._clock())

    def is_blocked(self) -> bool:
        return self._safety_mode_active(self._clock())

    def reset_safety_mode(self) -> None:
        """Operator override: clear trips, safety mode and rapid-loss state"""
        s = self.state
        s.tripped = False
        s.trip_reason = ""
        s.trip_reasons = []
        s.in_safety_mode = False
        s.safety_reason = ""
        s.safety_until = 0.0
        s.recent_losses.clear()
        s.rapid_trigger_count = 0
        s.rapid_cooldown_until = 0.0
        s.consecutive_losses = 0
        logger.info("Safety mode reset")

    # ---- balance ----

    def validate_account_balance(self, stake: float, balance: float,
                                 max_risk_fraction: Optional[float] = None) -> BalanceCheck:
        """
        Check a stake against the account before committing it.

        Never raises for a policy failure; the reasons explain what failed.
        """
        stake = _check_amount("Stake", stake)
        balance = _check_amount("Balance", balance)
        fraction = max_risk_fraction if max_risk_fraction is not None else self.config.max_stake_risk_fraction

        max_stake = balance * fraction
        available = balance - self.min_balance_reserve
        reasons: List[str] = []
        if stake > balance:
            reasons.append("insufficient_balance")
        if stake > max_stake:
            reasons.append("max_risk_exceeded")
        if stake > available:
            reasons.append("minimum_balance_violation")

        metrics = {
            "balance": balance,
            "stake": stake,
            "max_stake": round(max_stake, 2),
            "available_balance": round(available, 2),
            "min_balance_reserve": self.min_balance_reserve,
            "risk_percent": round(stake / balance * 100, 2) if balance > 0 else math.inf,
        }
        if reasons:
            logger.warning(f"Balance validation failed: {', '.join(reasons)} (stake {stake:.2f}, balance {balance:.2f})")
        return BalanceCheck(not reasons, tuple(reasons), metrics)

    def get_stats(self) -> Dict[str, Any]:
        now = self._clock()
        s = self.state
        self._prune_window(now)
        return {
            "tripped": s.tripped,
            "trip_reason": s.trip_reason,
            "trip_reasons": list(s.trip_reasons),
            "in_safety_mode": s.in_safety_mode,
            "cooldown_remaining": round(self.cooldown_remaining(), 1),
            "cumulative_loss": round(s.cumulative_loss, 2),
            "daily_loss": round(s.daily_loss, 2),
            "consecutive_losses": s.consecutive_losses,
            "recent_losses": len(s.recent_losses),
            "rapid_trigger_count": s.rapid_trigger_count,
            "rapid_cooldown_remaining": round(self.rapid_loss_cooldown_remaining(), 1),
        }
