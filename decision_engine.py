"""
Decision Engine - Decides the next trade from the previous outcome

One engine per trading session. The caller reports each finished trade on
the next call to prepare_next_trade and receives either a stake and
contract parameters or a refusal with a reason. Refusals are ordinary
return values; only invalid inputs and broken invariants raise.

Stop conditions, first match wins:
1. Daily trade limit
2. Profit target
3. Loss limit
4. Consecutive losses
5. Rapid-loss cooldown
6. Circuit breaker (safety mode)
"""

import logging
import math
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from digit_policy import DigitPolicy, RandomDigitPolicy, barrier_for
from enhanced_logging import log_with_context
from errors import InvalidProfitValue
from logging_utils import ThrottledLogger
from reward_table import ContractFamily, RewardTable
from risk_governor import RiskGovernor
from session_state import SessionState, Statistics
from stake_sequencer import SequenceEvent, SequenceState, SequenceTransition, StakeSequencer
from strategy_config import StrategyConfig
from trade_decision import DecisionMetadata, StopReason, TradeDecision

logger = logging.getLogger(__name__)


def _validate_outcome(last_outcome: Optional[bool], last_profit: Optional[float],
                      awaiting_outcome: bool = False) -> None:
    if last_outcome is None and last_profit is None:
        if awaiting_outcome:
            raise InvalidProfitValue("Result of the previous trade was not reported")
        return
    if last_outcome is None:
        raise InvalidProfitValue(f"Profit {last_profit} reported without a win/loss outcome")
    if isinstance(last_profit, bool) or not isinstance(last_profit, (int, float)):
        raise InvalidProfitValue(f"Profit must be a number, got {last_profit!r}")
    if not math.isfinite(last_profit):
        raise InvalidProfitValue(f"Profit must be finite, got {last_profit}")
    if last_outcome and last_profit < 0:
        raise InvalidProfitValue(f"Winning trade reported a loss of {last_profit}")
    if not last_outcome and last_profit > 0:
        raise InvalidProfitValue(f"Losing trade reported a profit of {last_profit}")


class DecisionEngine:
    """
    Orchestrates the stake sequencer, risk governor and reward table.

    Strictly sequential: the outcome of trade N must be reported before the
    parameters of trade N+1 are known. After an approved trade the next call
    must carry its result. Not thread-safe; callers keep at most one trade in
    flight per engine.
    """

    def __init__(
        self,
        config: StrategyConfig,
        digit_policy: Optional[DigitPolicy] = None,
        reward_table: Optional[RewardTable] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config
        self.digit_policy = digit_policy if digit_policy is not None else RandomDigitPolicy()
        self.reward_table = reward_table if reward_table is not None else RewardTable()
        self._clock = clock

        # Fail at session start if the contract has no payout for a sequence stake
        for multiplier in sorted(set(config.sequence)):
            self.reward_table.lookup(config.contract_type, round(config.initial_stake * multiplier, 2))

        self.sequencer = StakeSequencer(config)
        self.governor = RiskGovernor(
            config.circuit_breaker,
            base_stake=config.base_stake,
            min_balance_reserve=config.min_balance_reserve,
            clock=clock,
        )
        self.session = SessionState()
        self.statistics = Statistics()
        self.is_active = True

        self.on_stop: Optional[Callable[[TradeDecision], None]] = None
        self.on_sequence_completed: Optional[Callable[[float], None]] = None

        self._last_stop: Optional[StopReason] = None
        self._awaiting_outcome = False
        self._refusals = ThrottledLogger(logger, min_interval=30.0, clock=clock)

        logger.info(
            f"Decision engine ready: {config.market} {config.contract_type.value}, "
            f"stake {config.initial_stake}, sequence {config.sequence_label}, "
            f"recovery {config.recovery_mode.value}"
        )

    # ---- main cycle ----

    def prepare_next_trade(
        self,
        last_outcome: Optional[bool] = None,
        last_profit: Optional[float] = None,
        current_balance: Optional[float] = None
    ) -> TradeDecision:
        """
        Feed the previous trade's result and decide the next trade.

        Args:
            last_outcome: True for a win, False for a loss, None on the first call
            last_profit: Net profit of that trade (negative for a loss)
            current_balance: Account balance for the balance and percentage checks

        Raises:
            InvalidProfitValue: profit missing, non-finite or inconsistent with
                the outcome, or no result given for an approved trade. Nothing
                is updated; report the outcome again.
        """
        if not self.is_active:
            if last_outcome is not None:
                logger.warning(
                    f"Engine paused, discarding reported outcome "
                    f"({'win' if last_outcome else 'loss'} {last_profit})"
                )
                self._awaiting_outcome = False
            return TradeDecision.refuse(StopReason.PAUSED, "paused", self._metadata())

        _validate_outcome(last_outcome, last_profit, self._awaiting_outcome)

        now = self._clock()
        if self.session.roll_over_if_new_day(now):
            self.governor.roll_day()
            logger.info(f"New trading day {self.session.trading_day}, daily counters reset")

        if last_outcome is not None:
            self._awaiting_outcome = False
            self._apply_outcome(bool(last_outcome), float(last_profit), now)

        refusal = self._check_stop_conditions(current_balance)
        if refusal is not None:
            return refusal

        decision = self._build_trade(current_balance)
        self._awaiting_outcome = decision.should_trade
        return decision

    def _apply_outcome(self, won: bool, profit: float, now: float) -> None:
        self.session.record_outcome(won, profit, now)
        self.statistics.record_outcome(won, self.session)

        if won:
            transition = self.sequencer.on_win(profit)
            self.governor.record_win(profit)
        else:
            transition = self.sequencer.on_loss(profit, self.config.recovery_mode)
            self.governor.record_loss(-profit)

        self.session.recovery_attempts = transition.recovery_attempts
        self._record_transition(transition)

        log_with_context(
            logger, logging.INFO,
            f"Trade {'won' if won else 'lost'} {profit:+.2f}, "
            f"total {self.session.total_profit:+.2f}, {transition.event.value}",
            event=transition.event.value,
            profit=round(profit, 2),
            total_profit=round(self.session.total_profit, 2),
            sequence_position=transition.position,
            next_stake=round(transition.stake, 2),
            in_recovery=self.sequencer.in_recovery,
        )

    def _record_transition(self, transition: SequenceTransition) -> None:
        if transition.event == SequenceEvent.COMPLETED:
            self.statistics.record_completed_sequence(
                transition.sequence_profit, self.sequencer.sequence_label
            )
            if self.on_sequence_completed:
                try:
                    self.on_sequence_completed(transition.sequence_profit)
                except Exception as e:
                    logger.error(f"Sequence completed callback error: {e}")
        elif transition.abandoned:
            self.statistics.record_abandoned_sequence(transition.sequence_profit)

    def _check_stop_conditions(self, current_balance: Optional[float]) -> Optional[TradeDecision]:
        cfg = self.config
        session = self.session

        if session.trades_today >= cfg.max_daily_trades:
            return self._refuse(StopReason.DAILY_TRADE_LIMIT, "Daily trade limit reached")

        if session.total_profit >= cfg.profit_threshold:
            return self._refuse(
                StopReason.PROFIT_TARGET, f"Profit target reached ({session.total_profit:.2f})"
            )

        if session.total_profit <= -cfg.loss_threshold:
            return self._refuse(
                StopReason.LOSS_LIMIT, f"Loss limit reached ({abs(session.total_profit):.2f})"
            )

        if session.consecutive_losses >= cfg.max_consecutive_losses:
            return self._refuse(
                StopReason.CONSECUTIVE_LOSSES, f"Max consecutive losses ({session.consecutive_losses})"
            )

        cooling = self.governor.in_rapid_loss_cooldown()
        if not cooling:
            cooling = self.governor.check_rapid_losses()
        if cooling:
            remaining = self.governor.rapid_loss_cooldown_remaining()
            return self._refuse(
                StopReason.RAPID_LOSS_COOLDOWN,
                f"Rapid loss cooldown ({remaining:.0f}s remaining)",
                cooldown_remaining=remaining,
            )

        breaker = self.governor.check_circuit_breakers(current_balance)
        if breaker.blocked:
            remaining = self.governor.cooldown_remaining()
            return self._refuse(
                StopReason.CIRCUIT_BREAKER,
                f"Circuit breaker tripped: {', '.join(breaker.reasons) or breaker.reason} "
                f"({remaining:.0f}s remaining)",
                cooldown_remaining=remaining,
                validation_reasons=breaker.reasons,
            )

        return None

    def _build_trade(self, current_balance: Optional[float]) -> TradeDecision:
        cfg = self.config
        stake = self.sequencer.next_stake()
        payout_percent = self.reward_table.lookup(cfg.contract_type, stake)

        if current_balance is not None:
            check = self.governor.validate_account_balance(stake, current_balance)
            if not check.valid:
                return self._refuse(
                    StopReason.BALANCE_VALIDATION,
                    f"Balance validation failed: {', '.join(check.reasons)}",
                    validation_reasons=check.reasons,
                )

        digit = barrier_for(cfg.contract_type, self.digit_policy, cfg.barrier)
        is_prediction = cfg.contract_type == ContractFamily.DIGITDIFF

        self._last_stop = None
        self._refusals.reset()

        decision = TradeDecision(
            should_trade=True,
            amount=stake,
            contract_type=cfg.contract_type.value,
            barrier=None if is_prediction else digit,
            prediction=digit if is_prediction else None,
            duration=cfg.duration,
            duration_unit=cfg.duration_unit,
            market=cfg.market,
            currency=cfg.currency,
            metadata=self._metadata(
                expected_payout_percent=payout_percent,
                expected_profit=round(stake * payout_percent / 100, 2),
            ),
        )
        logger.debug(
            f"Next trade: {decision.contract_type} {stake:.2f} on {cfg.market} "
            f"(position {decision.metadata.sequence_position}, recovery {decision.metadata.in_recovery})"
        )
        return decision

    def _metadata(self, **extra) -> DecisionMetadata:
        state = self.sequencer.state
        return DecisionMetadata(
            sequence_position=state.position,
            in_recovery=state.in_recovery,
            sequence_label=self.sequencer.sequence_label,
            recovery_attempts=state.recovery_attempts,
            loss_count=state.loss_count,
            **extra
        )

    def _refuse(self, code: StopReason, reason: str, **extra) -> TradeDecision:
        decision = TradeDecision.refuse(code, reason, self._metadata(**extra))
        self._refusals.warning(f"Not trading: {reason}", key=code.value)

        if code != self._last_stop:
            self._last_stop = code
            log_with_context(
                logger, logging.INFO, f"Stop condition: {code.value}",
                reason=reason,
                session=self.session.to_dict(),
                risk=self.governor.get_stats(),
            )
            if self.on_stop:
                try:
                    self.on_stop(decision)
                except Exception as e:
                    logger.error(f"Stop callback error: {e}")
        return decision

    # ---- control ----

    def reset(self) -> None:
        """Reinitialize sequence, session totals and statistics. Risk state is kept."""
        self.sequencer.initialize()
        self.session = SessionState()
        self.statistics = Statistics()
        self.is_active = True
        self._last_stop = None
        self._awaiting_outcome = False
        self._refusals.reset()
        logger.info("Decision engine reset")

    def pause(self) -> None:
        if self.is_active:
            self.is_active = False
            logger.info("Decision engine paused")

    def resume(self) -> None:
        if not self.is_active:
            self.is_active = True
            logger.info("Decision engine resumed")

    def reset_safety_mode(self) -> None:
        self.governor.reset_safety_mode()
        self._last_stop = None

    # ---- snapshots ----

    def get_statistics(self) -> Statistics:
        return replace(self.statistics, sequence_history=list(self.statistics.sequence_history))

    def get_session_state(self) -> SessionState:
        return replace(self.session)

    def get_sequence_state(self) -> SequenceState:
        return self.sequencer.snapshot()

    def get_risk_state(self) -> Dict[str, Any]:
        return self.governor.get_stats()

    def get_summary(self) -> Dict[str, Any]:
        """Session summary for notifications and audit logs"""
        state = self.sequencer.state
        return {
            "is_active": self.is_active,
            "market": self.config.market,
            "contract_type": self.config.contract_type.value,
            "sequence": self.sequencer.sequence_label,
            "sequence_position": state.position,
            "current_stake": round(state.current_stake, 2),
            "in_recovery": state.in_recovery,
            "loss_count": state.loss_count,
            "session": self.session.to_dict(),
            "statistics": self.statistics.to_dict(),
            "risk": self.governor.get_stats(),
        }
