"""
Stake Sequencer - Progressive 1-3-2-6 style staking with loss recovery

Wins walk forward through the multiplier sequence; completing it banks the
run and starts over. A loss either restarts the sequence or, with sequence
protection on, switches to recovery staking sized from the outstanding loss.
Recovery is bounded: after max_recovery_attempts failed recovery trades the
whole state is thrown away (hard reset).
"""

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from errors import InvariantViolation
from strategy_config import RecoveryMode, StrategyConfig

logger = logging.getLogger(__name__)


class SequenceEvent(Enum):
    ADVANCED = "ADVANCED"
    COMPLETED = "COMPLETED"
    RESET = "RESET"
    RECOVERY_ENTERED = "RECOVERY_ENTERED"
    RECOVERY_ESCALATED = "RECOVERY_ESCALATED"
    RECOVERY_CONTINUED = "RECOVERY_CONTINUED"
    RECOVERY_EXITED = "RECOVERY_EXITED"
    HARD_RESET = "HARD_RESET"


@dataclass
class SequenceState:
    sequence: Tuple[float, ...]
    position: int = 0
    current_stake: float = 0.0
    sequence_profit: float = 0.0
    in_recovery: bool = False
    loss_count: int = 0
    recovery_attempts: int = 0
    recovery_stake: float = 0.0


@dataclass(frozen=True)
class SequenceTransition:
    """What a single outcome did to the sequence"""
    event: SequenceEvent
    sequence_profit: float  # profit of the attempt when the event happened
    stake: float
    position: int
    recovery_attempts: int

    @property
    def abandoned(self) -> bool:
        return self.event in (SequenceEvent.RESET, SequenceEvent.HARD_RESET)


class StakeSequencer:
    """Owns the SequenceState of one session"""

    def __init__(self, config: StrategyConfig):
        self.config = config
        self.state = self._fresh_state()

    def _fresh_state(self) -> SequenceState:
        sequence = self.config.sequence
        return SequenceState(
            sequence=sequence,
            current_stake=self.config.initial_stake * sequence[0],
        )

    @property
    def sequence_label(self) -> str:
        return self.config.sequence_label

    @property
    def in_recovery(self) -> bool:
        return self.state.in_recovery

    def initialize(self) -> None:
        """Start from position 0 with a clean state (also the hard reset)"""
        self.state = self._fresh_state()

    def snapshot(self) -> SequenceState:
        return replace(self.state)

    def next_stake(self) -> float:
        stake = self.state.current_stake
        if not math.isfinite(stake) or stake <= 0:
            raise InvariantViolation(f"Sequencer produced invalid stake {stake}")
        return round(stake, 2)

    def _stake_at(self, position: int) -> float:
        return self.config.initial_stake * self.state.sequence[position]

    def _restart(self) -> None:
        s = self.state
        s.position = 0
        s.current_stake = self._stake_at(0)
        s.sequence_profit = 0.0
        s.loss_count = 0

    def _transition(self, event: SequenceEvent, profit: float) -> SequenceTransition:
        s = self.state
        if not math.isfinite(s.current_stake) or s.current_stake <= 0:
            raise InvariantViolation(f"Stake became {s.current_stake} after {event.value}")
        if not 0 <= s.position < len(s.sequence):
            raise InvariantViolation(f"Sequence position {s.position} out of range")
        return SequenceTransition(
            event=event,
            sequence_profit=profit,
            stake=s.current_stake,
            position=s.position,
            recovery_attempts=s.recovery_attempts,
        )

    def recovery_stake(self, loss_so_far: float, mode: Optional[RecoveryMode] = None,
                       escalate: bool = False) -> float:
        """
        Stake sized to recoup loss_so_far on a win.

        loss_so_far * multiplier(mode), times the escalation factor when
        escalating, capped at loss_threshold * recovery_cap_fraction and never
        below the sequence's base stake.
        """
        if not math.isfinite(loss_so_far) or loss_so_far < 0:
            raise InvariantViolation(f"loss_so_far must be a non-negative finite amount, got {loss_so_far}")
        multiplier = self.config.recovery_multiplier(mode)
        if escalate:
            multiplier *= self.config.recovery_escalation_factor
        stake = min(loss_so_far * multiplier, self.config.recovery_cap)
        return max(stake, self.config.base_stake)

    def on_win(self, profit: float) -> SequenceTransition:
        s = self.state
        s.sequence_profit += profit

        if s.in_recovery:
            if s.sequence_profit >= 0:
                return self.exit_recovery()
            s.current_stake = self.recovery_stake(-s.sequence_profit)
            s.recovery_stake = s.current_stake
            return self._transition(SequenceEvent.RECOVERY_CONTINUED, s.sequence_profit)

        s.position += 1
        if s.position >= len(s.sequence):
            completed_profit = s.sequence_profit
            self._restart()
            logger.info(f"Sequence {self.sequence_label} completed, profit {completed_profit:.2f}")
            return self._transition(SequenceEvent.COMPLETED, completed_profit)

        s.current_stake = self._stake_at(s.position)
        return self._transition(SequenceEvent.ADVANCED, s.sequence_profit)

    def on_loss(self, profit: float, recovery_mode: Optional[RecoveryMode] = None,
                loss_so_far: Optional[float] = None) -> SequenceTransition:
        s = self.state
        s.sequence_profit += profit
        s.loss_count += 1
        if loss_so_far is None:
            loss_so_far = max(0.0, -s.sequence_profit)

        if not s.in_recovery:
            if not self.config.enable_sequence_protection:
                lost = s.sequence_profit
                self._restart()
                return self._transition(SequenceEvent.RESET, lost)

            s.in_recovery = True
            s.recovery_attempts = 0
            s.current_stake = self.recovery_stake(loss_so_far, recovery_mode)
            s.recovery_stake = s.current_stake
            logger.info(f"Entering recovery, loss {loss_so_far:.2f}, stake {s.current_stake:.2f}")
            return self._transition(SequenceEvent.RECOVERY_ENTERED, s.sequence_profit)

        s.recovery_attempts += 1
        if s.recovery_attempts >= self.config.max_recovery_attempts:
            lost = s.sequence_profit
            attempts = s.recovery_attempts
            self.initialize()
            logger.warning(f"Hard reset after {attempts} failed recovery attempts, abandoned {lost:.2f}")
            return self._transition(SequenceEvent.HARD_RESET, lost)

        stake = self.recovery_stake(loss_so_far, recovery_mode, escalate=True)
        s.current_stake = min(max(stake, s.recovery_stake), self.config.recovery_cap)
        s.recovery_stake = s.current_stake
        return self._transition(SequenceEvent.RECOVERY_ESCALATED, s.sequence_profit)

    def exit_recovery(self) -> SequenceTransition:
        recovered = self.state.sequence_profit
        self.state.in_recovery = False
        self.state.recovery_attempts = 0
        self.state.recovery_stake = 0.0
        self._restart()
        logger.info(f"Exited recovery, attempt profit {recovered:.2f}")
        return self._transition(SequenceEvent.RECOVERY_EXITED, recovered)
