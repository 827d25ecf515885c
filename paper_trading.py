"""
Paper Trading - Simulated execution for driving the decision engine offline

Stands in for the broker: each TradeDecision is settled immediately against
a simulated exit digit (or a coin flip at a fixed win rate) and paid out
using the reward table.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from decision_engine import DecisionEngine
from reward_table import ContractFamily, RewardTable
from trade_decision import StopReason, TradeDecision

logger = logging.getLogger(__name__)

# Refusals that clear on their own once the governor's cooldown runs out
COOLDOWN_STOPS = (StopReason.RAPID_LOSS_COOLDOWN, StopReason.CIRCUIT_BREAKER)


class SimulatedClock:
    """Manually advanced wall clock for simulations"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class PaperTrade:
    """Represents a simulated trade"""
    trade_id: int
    symbol: str
    contract_type: str
    stake: float
    barrier: Optional[int]
    exit_digit: Optional[int]
    payout_percent: float
    profit: float
    is_win: bool
    balance_after: float
    timestamp: float


@dataclass
class SimulationResult:
    """Results from a simulation run"""
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    total_profit: float = 0.0
    max_drawdown: float = 0.0
    start_balance: float = 0.0
    end_balance: float = 0.0
    stop_reason: Optional[str] = None
    stop_code: Optional[str] = None
    cooldowns_waited: int = 0
    trades: List[PaperTrade] = field(default_factory=list)
    equity_curve: List[float] = field(default_factory=list)

    def to_dict(self, include_trades: bool = False) -> Dict[str, Any]:
        data = {
            "total_trades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": round(self.win_rate, 1),
            "total_profit": round(self.total_profit, 2),
            "max_drawdown": round(self.max_drawdown, 2),
            "start_balance": self.start_balance,
            "end_balance": round(self.end_balance, 2),
            "stop_reason": self.stop_reason,
            "stop_code": self.stop_code,
            "cooldowns_waited": self.cooldowns_waited,
        }
        if include_trades:
            data["trades"] = [t.__dict__ for t in self.trades]
        return data


def _digit_contract_won(family: ContractFamily, barrier: Optional[int], exit_digit: int) -> bool:
    if family == ContractFamily.DIGITDIFF:
        return exit_digit != barrier
    if family == ContractFamily.DIGITOVER:
        return exit_digit > barrier
    if family == ContractFamily.DIGITUNDER:
        return exit_digit < barrier
    if family == ContractFamily.DIGITEVEN:
        return exit_digit % 2 == 0
    if family == ContractFamily.DIGITODD:
        return exit_digit % 2 == 1
    raise ValueError(f"{family.value} is not a digit contract")


class PaperTradingExecutor:
    """
    Settles decisions without a broker

    Features:
    - Digit contracts settle against a random exit digit
    - CALL/PUT (or any contract when win_rate is set) settle on a weighted coin
    - Payout from the reward table at the staked tier
    """

    def __init__(self, initial_balance: float = 1000.0, win_rate: Optional[float] = None,
                 reward_table: Optional[RewardTable] = None, seed: Optional[int] = None,
                 clock=None):
        self.initial_balance = initial_balance
        self.balance = initial_balance
        self.win_rate = None if win_rate is None else max(0.0, min(1.0, win_rate))
        self.reward_table = reward_table if reward_table is not None else RewardTable()
        self._rng = random.Random(seed)
        self._clock = clock if clock is not None else SimulatedClock()
        self._trade_counter = 0
        self.trades: List[PaperTrade] = []

    def execute(self, decision: TradeDecision) -> PaperTrade:
        if not decision.should_trade:
            raise ValueError(f"Cannot execute a refused decision: {decision.reason}")

        family = ContractFamily(decision.contract_type)
        barrier = decision.prediction if decision.prediction is not None else decision.barrier
        exit_digit: Optional[int] = None

        if self.win_rate is not None or family in (ContractFamily.CALL, ContractFamily.PUT):
            is_win = self._rng.random() < (self.win_rate if self.win_rate is not None else 0.5)
        else:
            exit_digit = self._rng.randint(0, 9)
            is_win = _digit_contract_won(family, barrier, exit_digit)

        stake = decision.amount
        payout_percent = self.reward_table.lookup(family, stake)
        profit = round(stake * payout_percent / 100, 2) if is_win else -stake
        self.balance = round(self.balance + profit, 2)

        self._trade_counter += 1
        trade = PaperTrade(
            trade_id=self._trade_counter,
            symbol=decision.market,
            contract_type=family.value,
            stake=stake,
            barrier=barrier,
            exit_digit=exit_digit,
            payout_percent=payout_percent,
            profit=profit,
            is_win=is_win,
            balance_after=self.balance,
            timestamp=self._clock(),
        )
        self.trades.append(trade)
        logger.debug(
            f"Paper trade #{trade.trade_id}: {family.value} {stake:.2f} "
            f"{'WIN' if is_win else 'LOSS'} {profit:+.2f}, balance {self.balance:.2f}"
        )
        return trade


def run_simulation(engine: DecisionEngine, executor: PaperTradingExecutor,
                   max_trades: int = 100, trade_interval: float = 2.0,
                   clock: Optional[SimulatedClock] = None,
                   wait_out_cooldowns: bool = False,
                   max_cooldown_waits: int = 20) -> SimulationResult:
    """
    Alternate prepare_next_trade and execute until the engine refuses or
    max_trades have been placed.

    With wait_out_cooldowns and a SimulatedClock, cooldown refusals advance
    the clock past the cooldown instead of ending the run.
    """
    result = SimulationResult(start_balance=executor.balance, equity_curve=[executor.balance])
    peak = executor.balance
    last: Optional[PaperTrade] = None

    while result.total_trades < max_trades:
        decision = engine.prepare_next_trade(
            last_outcome=None if last is None else last.is_win,
            last_profit=None if last is None else last.profit,
            current_balance=executor.balance,
        )
        last = None

        if not decision.should_trade:
            remaining = decision.metadata.cooldown_remaining if decision.metadata else None
            if (wait_out_cooldowns and clock is not None and decision.reason_code in COOLDOWN_STOPS
                    and remaining is not None and result.cooldowns_waited < max_cooldown_waits):
                clock.advance(remaining + 1)
                result.cooldowns_waited += 1
                continue
            result.stop_reason = decision.reason
            result.stop_code = decision.reason_code.value if decision.reason_code else None
            break

        last = executor.execute(decision)
        result.trades.append(last)
        result.total_trades += 1
        if last.is_win:
            result.wins += 1
        else:
            result.losses += 1

        result.equity_curve.append(executor.balance)
        peak = max(peak, executor.balance)
        if peak > 0:
            result.max_drawdown = max(result.max_drawdown, (peak - executor.balance) / peak * 100)

        if clock is not None:
            clock.advance(trade_interval)

    if last is not None:
        # Let the engine see the final outcome so its statistics are complete
        final = engine.prepare_next_trade(last.is_win, last.profit, executor.balance)
        if not final.should_trade and result.stop_reason is None:
            result.stop_reason = final.reason
            result.stop_code = final.reason_code.value if final.reason_code else None

    result.end_balance = executor.balance
    result.total_profit = round(executor.balance - result.start_balance, 2)
    result.win_rate = (result.wins / result.total_trades * 100) if result.total_trades else 0.0
    logger.info(
        f"Simulation finished: {result.total_trades} trades, {result.wins}W/{result.losses}L, "
        f"profit {result.total_profit:+.2f}, stop: {result.stop_reason or 'max trades'}"
    )
    return result
