import random

import pytest

from conftest import make_config
from decision_engine import DecisionEngine
from digit_policy import CyclingDigitPolicy, FixedDigitPolicy
from errors import InvalidProfitValue, InvalidStake, UnsupportedContractFamily
from reward_table import ContractFamily, RewardTable, RewardTier
from trade_decision import StopReason

# Limits high enough that only the condition under test can stop trading
QUIET_BREAKER = dict(rapid_loss_threshold=50, max_consecutive_losses=50)


def make_engine(clock, config=None, digit=7, **overrides):
    if config is None:
        config = make_config(**overrides)
    return DecisionEngine(config, digit_policy=FixedDigitPolicy(digit), clock=clock)


def win(decision):
    return True, round(decision.amount * decision.metadata.expected_payout_percent / 100, 2)


def lose(decision):
    return False, -decision.amount


def test_first_call_returns_initial_trade(clock):
    decision = make_engine(clock).prepare_next_trade()
    assert decision.should_trade
    assert decision.reason is None
    assert decision.amount == 1
    assert decision.contract_type == "DIGITDIFF"
    assert decision.prediction == 7
    assert decision.barrier is None
    assert decision.duration == 1
    assert decision.duration_unit == "t"
    assert decision.market == "1HZ100V"
    assert decision.metadata.sequence_position == 0
    assert decision.metadata.in_recovery is False
    assert decision.metadata.sequence_label == "1-3-2-6"
    assert decision.metadata.expected_payout_percent == 9.00
    assert decision.metadata.expected_profit == 0.09


def test_four_wins_run_the_sequence_then_restart(clock):
    engine = make_engine(clock)
    decision = engine.prepare_next_trade()
    stakes = [decision.amount]
    for _ in range(4):
        decision = engine.prepare_next_trade(*win(decision))
        stakes.append(decision.amount)

    assert stakes == [1, 3, 2, 6, 1]
    stats = engine.get_statistics()
    assert stats.sequences_completed == 1
    assert stats.total_wins == 4
    assert stats.max_win_streak == 4
    assert stats.best_sequence_profit > 0
    assert engine.get_sequence_state().position == 0


def test_loss_moves_engine_into_recovery(clock):
    engine = make_engine(clock)
    decision = engine.prepare_next_trade()
    decision = engine.prepare_next_trade(*lose(decision))
    assert decision.should_trade
    assert decision.metadata.in_recovery
    assert decision.amount == 10.25
    assert decision.metadata.loss_count == 1
    assert engine.get_summary()["loss_count"] == 1
    assert engine.get_session_state().consecutive_losses == 1


def test_daily_trade_limit(clock):
    engine = make_engine(clock, max_daily_trades=5)
    decision = engine.prepare_next_trade()
    for _ in range(4):
        decision = engine.prepare_next_trade(*win(decision))
        assert decision.should_trade

    decision = engine.prepare_next_trade(*win(decision))
    assert not decision.should_trade
    assert "Daily trade limit" in decision.reason
    assert decision.reason_code == StopReason.DAILY_TRADE_LIMIT
    assert engine.get_session_state().trades_today == 5


def test_new_day_resets_daily_trade_count(clock):
    engine = make_engine(clock, max_daily_trades=1)
    decision = engine.prepare_next_trade()
    assert not engine.prepare_next_trade(*win(decision)).should_trade

    clock.advance(24 * 3600)
    decision = engine.prepare_next_trade()
    assert decision.should_trade
    session = engine.get_session_state()
    assert session.trades_today == 0
    assert session.daily_profit == 0
    assert session.total_trades == 1


def test_profit_target_refusal_is_idempotent(clock):
    engine = make_engine(clock, profit_threshold=1)
    engine.prepare_next_trade()
    decision = engine.prepare_next_trade(True, 1.5)
    assert decision.reason_code == StopReason.PROFIT_TARGET
    assert decision.reason == "Profit target reached (1.50)"

    for _ in range(3):
        clock.advance(3600)
        again = engine.prepare_next_trade()
        assert not again.should_trade
        assert again.reason == decision.reason


def test_loss_limit(clock):
    engine = make_engine(clock, loss_threshold=3, enable_sequence_protection=False,
                         breaker=QUIET_BREAKER, max_consecutive_losses=10)
    decision = engine.prepare_next_trade()
    for _ in range(3):
        decision = engine.prepare_next_trade(*lose(decision))
    assert decision.reason_code == StopReason.LOSS_LIMIT
    assert decision.reason == "Loss limit reached (3.00)"
    assert not engine.prepare_next_trade().should_trade


def test_consecutive_loss_limit(clock):
    engine = make_engine(clock, max_consecutive_losses=2, enable_sequence_protection=False,
                         breaker=QUIET_BREAKER)
    decision = engine.prepare_next_trade()
    decision = engine.prepare_next_trade(*lose(decision))
    assert decision.should_trade
    decision = engine.prepare_next_trade(*lose(decision))
    assert decision.reason_code == StopReason.CONSECUTIVE_LOSSES
    assert decision.reason == "Max consecutive losses (2)"


def test_daily_limit_takes_precedence_over_loss_limit(clock):
    engine = make_engine(clock, max_daily_trades=3, loss_threshold=3,
                         enable_sequence_protection=False, breaker=QUIET_BREAKER)
    decision = engine.prepare_next_trade()
    for _ in range(3):
        decision = engine.prepare_next_trade(*lose(decision))
    assert engine.get_session_state().total_profit == -3
    assert decision.reason_code == StopReason.DAILY_TRADE_LIMIT


def test_profit_target_takes_precedence_over_consecutive_losses(clock):
    engine = make_engine(clock, profit_threshold=1, max_consecutive_losses=1,
                         enable_sequence_protection=False)
    decision = engine.prepare_next_trade()
    decision = engine.prepare_next_trade(True, 5.0)
    assert decision.reason_code == StopReason.PROFIT_TARGET


def test_rapid_losses_block_until_cooldown_elapses(clock):
    engine = make_engine(clock, enable_sequence_protection=False,
                         breaker=dict(rapid_loss_threshold=3, rapid_loss_time_window=300, cooldown_period=60))
    decision = engine.prepare_next_trade()
    for _ in range(2):
        clock.advance(60)
        decision = engine.prepare_next_trade(*lose(decision))
        assert decision.should_trade

    clock.advance(60)
    decision = engine.prepare_next_trade(*lose(decision))
    assert decision.reason_code == StopReason.RAPID_LOSS_COOLDOWN
    assert decision.metadata.cooldown_remaining == 60

    clock.advance(59)
    assert engine.prepare_next_trade().reason_code == StopReason.RAPID_LOSS_COOLDOWN
    clock.advance(2)
    assert engine.prepare_next_trade().should_trade


def test_circuit_breaker_blocks_trading(clock):
    engine = make_engine(clock, enable_sequence_protection=False,
                         breaker=dict(max_daily_loss=1.5, rapid_loss_threshold=10, cooldown_period=120))
    decision = engine.prepare_next_trade()
    decision = engine.prepare_next_trade(*lose(decision))
    assert decision.should_trade
    decision = engine.prepare_next_trade(*lose(decision))
    assert decision.reason_code == StopReason.CIRCUIT_BREAKER
    assert "daily_loss_limit" in decision.reason
    assert decision.metadata.cooldown_remaining == 120
    assert engine.get_risk_state()["in_safety_mode"] is True


def test_balance_percentage_breaker_uses_supplied_balance(clock):
    engine = make_engine(clock, enable_sequence_protection=False,
                         breaker=dict(max_balance_percentage_loss=0.1, rapid_loss_threshold=10))
    decision = engine.prepare_next_trade(current_balance=100)
    decision = engine.prepare_next_trade(*lose(decision), current_balance=9)
    assert decision.reason_code == StopReason.CIRCUIT_BREAKER
    assert "balance_percentage_loss" in decision.metadata.validation_reasons


def test_reset_safety_mode_resumes_trading(clock):
    engine = make_engine(clock, enable_sequence_protection=False,
                         breaker=dict(max_consecutive_losses=1, rapid_loss_threshold=10))
    decision = engine.prepare_next_trade()
    decision = engine.prepare_next_trade(*lose(decision))
    decision = engine.prepare_next_trade(*lose(decision))
    assert decision.reason_code == StopReason.CIRCUIT_BREAKER

    engine.reset_safety_mode()
    assert engine.prepare_next_trade().should_trade


def test_low_balance_is_a_refusal_not_an_error(clock):
    engine = make_engine(clock)
    decision = engine.prepare_next_trade(current_balance=2)
    assert not decision.should_trade
    assert decision.reason_code == StopReason.BALANCE_VALIDATION
    assert "minimum_balance_violation" in decision.metadata.validation_reasons

    assert engine.prepare_next_trade(current_balance=100).should_trade


@pytest.mark.parametrize("outcome,profit", [
    (False, float("nan")),
    (True, float("inf")),
    (True, None),
    (None, 1.0),
    (True, "1.0"),
    (True, -1.0),
    (None, None),
    (False, 2.0),
])
def test_invalid_profit_leaves_state_untouched(clock, outcome, profit):
    engine = make_engine(clock)
    engine.prepare_next_trade()
    session = engine.get_session_state()
    sequence = engine.get_sequence_state()
    risk = engine.get_risk_state()

    with pytest.raises(InvalidProfitValue):
        engine.prepare_next_trade(outcome, profit)

    assert engine.get_session_state() == session
    assert engine.get_sequence_state() == sequence
    assert engine.get_risk_state() == risk
    # Reporting again with a valid value works
    assert engine.prepare_next_trade(False, -1.0).should_trade


def test_unreported_result_is_rejected_without_side_effects(clock):
    engine = make_engine(clock, max_daily_trades=2)
    decision = engine.prepare_next_trade()
    assert decision.should_trade

    for _ in range(3):
        with pytest.raises(InvalidProfitValue):
            engine.prepare_next_trade()
    assert engine.get_session_state().trades_today == 0

    decision = engine.prepare_next_trade(*win(decision))
    assert decision.should_trade
    assert not engine.prepare_next_trade(*win(decision)).should_trade
    assert engine.get_session_state().trades_today == 2


def test_no_result_needed_after_a_refusal(clock):
    engine = make_engine(clock, profit_threshold=1)
    engine.prepare_next_trade()
    assert not engine.prepare_next_trade(True, 2.0).should_trade
    assert not engine.prepare_next_trade().should_trade


def test_pause_discards_outcomes_and_resume_continues(clock):
    engine = make_engine(clock)
    decision = engine.prepare_next_trade()
    engine.pause()
    session = engine.get_session_state()
    sequence = engine.get_sequence_state()

    paused = engine.prepare_next_trade(*lose(decision))
    assert not paused.should_trade
    assert paused.reason == "paused"
    assert paused.reason_code == StopReason.PAUSED
    assert engine.get_session_state() == session
    assert engine.get_sequence_state() == sequence
    assert engine.get_risk_state()["consecutive_losses"] == 0

    engine.resume()
    decision = engine.prepare_next_trade()
    assert decision.should_trade
    assert decision.amount == 1


def test_reset_is_idempotent_and_restores_initial_state(clock):
    engine = make_engine(clock)
    fresh = make_engine(clock)

    decision = engine.prepare_next_trade()
    for outcome in (win, win, lose, win, lose):
        decision = engine.prepare_next_trade(*outcome(decision))

    engine.reset()
    first = (engine.get_session_state(), engine.get_sequence_state(), engine.get_statistics())
    engine.reset()
    second = (engine.get_session_state(), engine.get_sequence_state(), engine.get_statistics())

    assert first == second
    assert first == (fresh.get_session_state(), fresh.get_sequence_state(), fresh.get_statistics())
    assert engine.is_active


def test_reset_clears_profit_target_stop(clock):
    engine = make_engine(clock, profit_threshold=1)
    engine.prepare_next_trade()
    assert not engine.prepare_next_trade(True, 2.0).should_trade
    engine.reset()
    assert engine.prepare_next_trade().should_trade


def test_stake_always_positive_over_long_run(clock):
    config = make_config(
        profit_threshold=1e6, loss_threshold=1e5, max_daily_trades=1000, max_consecutive_losses=100,
        breaker=dict(max_absolute_loss=1e6, max_daily_loss=1e6, max_consecutive_losses=100,
                     rapid_loss_threshold=100),
    )
    engine = DecisionEngine(config, digit_policy=CyclingDigitPolicy([1, 2, 3]), clock=clock)
    rng = random.Random(11)
    decision = engine.prepare_next_trade()
    for _ in range(300):
        assert decision.should_trade, decision.reason
        assert decision.amount > 0
        assert 0 <= decision.metadata.sequence_position < 4
        clock.advance(5)
        outcome = win if rng.random() < 0.85 else lose
        decision = engine.prepare_next_trade(*outcome(decision))


def test_callbacks_fire_and_errors_are_contained(clock):
    engine = make_engine(clock, profit_threshold=5)
    completed = []
    stops = []
    engine.on_sequence_completed = completed.append
    engine.on_stop = stops.append

    decision = engine.prepare_next_trade()
    for _ in range(4):
        decision = engine.prepare_next_trade(*win(decision))
    assert len(completed) == 1

    def broken(_):
        raise RuntimeError("notifier down")

    engine.on_stop = broken
    decision = engine.prepare_next_trade(True, 10.0)
    assert decision.reason_code == StopReason.PROFIT_TARGET


def test_stop_callback_fires_once_per_stop(clock):
    engine = make_engine(clock, profit_threshold=1)
    stops = []
    engine.on_stop = stops.append
    engine.prepare_next_trade()
    engine.prepare_next_trade(True, 2.0)
    engine.prepare_next_trade()
    engine.prepare_next_trade()
    assert [d.reason_code for d in stops] == [StopReason.PROFIT_TARGET]


def test_digit_over_uses_configured_barrier(clock):
    engine = make_engine(clock, contract_type=ContractFamily.DIGITOVER, barrier=3)
    decision = engine.prepare_next_trade()
    assert decision.barrier == 3
    assert decision.prediction is None
    assert decision.to_contract_params()["barrier"] == "3"


def test_even_contract_has_no_barrier(clock):
    decision = make_engine(clock, contract_type=ContractFamily.DIGITEVEN).prepare_next_trade()
    assert decision.barrier is None
    assert decision.prediction is None
    assert "barrier" not in decision.to_contract_params()
    assert decision.metadata.expected_payout_percent == 95.00


def test_contract_params(clock):
    decision = make_engine(clock, digit=4).prepare_next_trade()
    assert decision.to_contract_params() == {
        "amount": 1,
        "basis": "stake",
        "contract_type": "DIGITDIFF",
        "currency": "USD",
        "duration": 1,
        "duration_unit": "t",
        "symbol": "1HZ100V",
        "barrier": "4",
    }
    data = decision.to_dict()
    assert data["should_trade"] is True
    assert data["metadata"]["sequence_label"] == "1-3-2-6"


def test_refused_decision_has_no_contract_params(clock):
    engine = make_engine(clock)
    engine.pause()
    with pytest.raises(ValueError):
        engine.prepare_next_trade().to_contract_params()


def test_sequence_stake_without_payout_fails_at_construction(clock):
    config = make_config(custom_sequence=(1, 0.5))
    table = RewardTable({ContractFamily.DIGITDIFF: [RewardTier(0.75, float("inf"), 9.0)]})
    with pytest.raises(InvalidStake):
        DecisionEngine(config, reward_table=table, clock=clock)


def test_fractional_sequence_stakes_stay_tradeable(clock):
    engine = make_engine(clock, custom_sequence=(1, 0.5))
    decision = engine.prepare_next_trade()
    decision = engine.prepare_next_trade(*win(decision))
    assert decision.should_trade
    assert decision.amount == 0.5
    assert decision.metadata.expected_payout_percent == 6.00


def test_missing_reward_table_fails_at_construction(clock, config):
    table = RewardTable({ContractFamily.CALL: [RewardTier(0.35, float("inf"), 79.0)]})
    with pytest.raises(UnsupportedContractFamily):
        DecisionEngine(config, reward_table=table, clock=clock)


def test_summary(clock):
    engine = make_engine(clock)
    decision = engine.prepare_next_trade()
    engine.prepare_next_trade(*win(decision))
    summary = engine.get_summary()
    assert summary["sequence"] == "1-3-2-6"
    assert summary["sequence_position"] == 1
    assert summary["current_stake"] == 3
    assert summary["loss_count"] == 0
    assert summary["session"]["total_trades"] == 1
    assert summary["statistics"]["total_wins"] == 1
