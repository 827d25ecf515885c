"""
Trade Decision - The engine's answer to "trade again, and with what?"
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class StopReason(Enum):
    PAUSED = "PAUSED"
    DAILY_TRADE_LIMIT = "DAILY_TRADE_LIMIT"
    PROFIT_TARGET = "PROFIT_TARGET"
    LOSS_LIMIT = "LOSS_LIMIT"
    CONSECUTIVE_LOSSES = "CONSECUTIVE_LOSSES"
    RAPID_LOSS_COOLDOWN = "RAPID_LOSS_COOLDOWN"
    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"
    BALANCE_VALIDATION = "BALANCE_VALIDATION"


@dataclass(frozen=True)
class DecisionMetadata:
    sequence_position: int
    in_recovery: bool
    sequence_label: str
    recovery_attempts: int = 0
    loss_count: int = 0
    expected_payout_percent: Optional[float] = None
    expected_profit: Optional[float] = None
    cooldown_remaining: Optional[float] = None
    validation_reasons: tuple = ()


@dataclass(frozen=True)
class TradeDecision:
    should_trade: bool
    reason: Optional[str] = None
    reason_code: Optional[StopReason] = None
    amount: Optional[float] = None
    contract_type: Optional[str] = None
    barrier: Optional[int] = None
    prediction: Optional[int] = None
    duration: Optional[int] = None
    duration_unit: Optional[str] = None
    market: Optional[str] = None
    currency: str = "USD"
    basis: str = "stake"
    metadata: Optional[DecisionMetadata] = None

    @classmethod
    def refuse(cls, code: StopReason, reason: str,
               metadata: Optional[DecisionMetadata] = None) -> "TradeDecision":
        return cls(should_trade=False, reason=reason, reason_code=code, metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reason_code"] = self.reason_code.value if self.reason_code else None
        if self.metadata is not None:
            data["metadata"]["validation_reasons"] = list(self.metadata.validation_reasons)
        return data

    def to_contract_params(self) -> Dict[str, Any]:
        """Parameters for a broker buy request"""
        if not self.should_trade:
            raise ValueError(f"Decision refuses to trade: {self.reason}")
        params: Dict[str, Any] = {
            "amount": self.amount,
            "basis": self.basis,
            "contract_type": self.contract_type,
            "currency": self.currency,
            "duration": self.duration,
            "duration_unit": self.duration_unit,
            "symbol": self.market,
        }
        barrier = self.prediction if self.prediction is not None else self.barrier
        if barrier is not None:
            params["barrier"] = str(barrier)
        return params
