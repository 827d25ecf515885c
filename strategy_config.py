"""
Strategy Configuration - Typed settings for one trading session

Everything the decision engine needs is fixed here at session start and
validated once. Unknown fields are rejected rather than merged in silently.

Load configs through strategy_config_from_mapping, load_strategy_config or
strategy_config_from_env; they report bad settings as ConfigurationError.
Constructing StrategyConfig directly raises pydantic.ValidationError.
"""

import json
import logging
import os
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from errors import ConfigurationError
from reward_table import ContractFamily
from symbols import DEFAULT_SYMBOL, get_symbol_config, validate_duration_for_symbol

logger = logging.getLogger(__name__)


class RecoveryMode(str, Enum):
    CONSERVATIVE = "conservative"
    NEUTRAL = "neutral"
    AGGRESSIVE = "aggressive"


class SequenceVariant(str, Enum):
    STANDARD = "standard"          # 1-3-2-6
    CONSERVATIVE = "conservative"  # 1-2-3-4
    AGGRESSIVE = "aggressive"      # 1-3-5-7
    NEUTRAL = "neutral"            # 1-3-2-6


SEQUENCE_VARIANTS: Dict[SequenceVariant, Tuple[float, ...]] = {
    SequenceVariant.STANDARD: (1, 3, 2, 6),
    SequenceVariant.CONSERVATIVE: (1, 2, 3, 4),
    SequenceVariant.AGGRESSIVE: (1, 3, 5, 7),
    SequenceVariant.NEUTRAL: (1, 3, 2, 6),
}

# Multiplier applied to the outstanding loss when sizing a recovery stake.
# Kept as data so operators can tune them per deployment.
DEFAULT_RECOVERY_MULTIPLIERS: Dict[RecoveryMode, float] = {
    RecoveryMode.CONSERVATIVE: 12.75,
    RecoveryMode.NEUTRAL: 10.25,
    RecoveryMode.AGGRESSIVE: 15.50,
}


class CircuitBreakerConfig(BaseModel):
    """Risk governor limits. Durations are in seconds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_absolute_loss: float = Field(default=1000.0, gt=0, description="Cumulative net loss ceiling")
    max_daily_loss: float = Field(default=500.0, gt=0, description="Gross loss ceiling per calendar day")
    max_consecutive_losses: int = Field(default=5, gt=0)
    max_balance_percentage_loss: float = Field(default=0.5, gt=0, le=1, description="Fraction of balance")
    rapid_loss_time_window: float = Field(default=30.0, gt=0)
    rapid_loss_threshold: int = Field(default=2, gt=0)
    cooldown_period: float = Field(default=60.0, gt=0)
    rapid_loss_cooldown_multiplier: float = Field(default=2.0, ge=1)
    max_rapid_loss_cooldown: float = Field(default=300.0, gt=0)
    max_stake_risk_fraction: float = Field(default=0.5, gt=0, le=1)
    min_balance_reserve: Optional[float] = Field(default=None, ge=0, description="Defaults to 3x base stake")

    @model_validator(mode="after")
    def check_cooldowns(self) -> "CircuitBreakerConfig":
        if self.max_rapid_loss_cooldown < self.cooldown_period:
            raise ValueError("max_rapid_loss_cooldown must be >= cooldown_period")
        return self


class StrategyConfig(BaseModel):
    """Immutable per-session strategy settings"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    profit_threshold: float = Field(default=1000.0, gt=0)
    loss_threshold: float = Field(default=500.0, gt=0)
    initial_stake: float = Field(default=5.0, gt=0)
    sequence_variant: SequenceVariant = SequenceVariant.STANDARD
    custom_sequence: Optional[Tuple[float, ...]] = None
    recovery_mode: RecoveryMode = RecoveryMode.NEUTRAL
    # Read-only mapping; multipliers are fixed for the session
    recovery_multipliers: Dict[RecoveryMode, float] = Field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_RECOVERY_MULTIPLIERS))
    )
    recovery_escalation_factor: float = Field(default=1.5, ge=1)
    recovery_cap_fraction: float = Field(default=0.5, gt=0, le=1)
    max_recovery_attempts: int = Field(default=2, ge=0)
    max_consecutive_losses: int = Field(default=5, gt=0)
    max_daily_trades: int = Field(default=50, gt=0)
    enable_sequence_protection: bool = True

    market: str = DEFAULT_SYMBOL
    contract_type: ContractFamily = ContractFamily.DIGITDIFF
    duration: int = Field(default=1, gt=0)
    duration_unit: str = "t"
    barrier: int = Field(default=5, ge=0, le=9, description="Digit barrier for DIGITOVER/DIGITUNDER")
    currency: str = "USD"

    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    @field_validator("custom_sequence")
    @classmethod
    def check_custom_sequence(cls, v: Optional[Tuple[float, ...]]) -> Optional[Tuple[float, ...]]:
        if v is None:
            return v
        if len(v) == 0:
            raise ValueError("custom_sequence cannot be empty")
        if any(m <= 0 for m in v):
            raise ValueError("custom_sequence multipliers must be positive")
        return v

    @field_validator("recovery_multipliers")
    @classmethod
    def check_multipliers(cls, v: Dict[RecoveryMode, float]) -> Mapping[RecoveryMode, float]:
        missing = [m.value for m in RecoveryMode if m not in v]
        if missing:
            raise ValueError(f"recovery_multipliers missing modes: {', '.join(missing)}")
        if any(x <= 0 for x in v.values()):
            raise ValueError("recovery multipliers must be positive")
        return MappingProxyType(dict(v))

    @field_serializer("recovery_multipliers")
    def dump_multipliers(self, v: Mapping[RecoveryMode, float]) -> Dict[str, float]:
        return {RecoveryMode(mode).value: multiplier for mode, multiplier in v.items()}

    @model_validator(mode="after")
    def check_market_and_stakes(self) -> "StrategyConfig":
        symbol = get_symbol_config(self.market)
        if symbol is None:
            raise ValueError(f"Unknown market: {self.market}")
        if validate_duration_for_symbol(self.market, self.duration, self.duration_unit) is None:
            raise ValueError(
                f"Duration {self.duration}{self.duration_unit} not supported on {self.market}"
            )
        if self.initial_stake < symbol.min_stake:
            raise ValueError(
                f"initial_stake {self.initial_stake} is below the {self.market} minimum {symbol.min_stake}"
            )
        lowest = round(self.initial_stake * min(self.sequence), 2)
        if lowest < symbol.min_stake:
            raise ValueError(
                f"Sequence stake {lowest:g} is below the {self.market} minimum {symbol.min_stake}"
            )
        if self.base_stake > self.recovery_cap:
            raise ValueError(
                f"Base stake {self.base_stake} exceeds the recovery cap {self.recovery_cap}"
            )
        return self

    @property
    def sequence(self) -> Tuple[float, ...]:
        if self.custom_sequence is not None:
            return tuple(self.custom_sequence)
        return SEQUENCE_VARIANTS[self.sequence_variant]

    @property
    def sequence_label(self) -> str:
        return "-".join(f"{m:g}" for m in self.sequence)

    @property
    def base_stake(self) -> float:
        return self.initial_stake * self.sequence[0]

    @property
    def recovery_cap(self) -> float:
        return self.loss_threshold * self.recovery_cap_fraction

    @property
    def min_balance_reserve(self) -> float:
        reserve = self.circuit_breaker.min_balance_reserve
        return reserve if reserve is not None else self.base_stake * 3

    def recovery_multiplier(self, mode: Optional[RecoveryMode] = None) -> float:
        return self.recovery_multipliers[RecoveryMode(mode or self.recovery_mode)]

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def strategy_config_from_mapping(data: Mapping[str, Any]) -> StrategyConfig:
    """Build a config from plain data, reporting problems as ConfigurationError"""
    try:
        return StrategyConfig.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid strategy config: {e}") from e


def load_strategy_config(path: str) -> StrategyConfig:
    """Load strategy configuration from a JSON file"""
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Strategy config not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Strategy config {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Strategy config {path} must contain a JSON object")
    config = strategy_config_from_mapping(data)
    logger.info(f"Loaded strategy config from {path} ({config.market}, sequence {config.sequence_label})")
    return config


_ENV_FIELDS = {
    "STRATEGY_PROFIT_THRESHOLD": "profit_threshold",
    "STRATEGY_LOSS_THRESHOLD": "loss_threshold",
    "STRATEGY_INITIAL_STAKE": "initial_stake",
    "STRATEGY_SEQUENCE_VARIANT": "sequence_variant",
    "STRATEGY_RECOVERY_MODE": "recovery_mode",
    "STRATEGY_MAX_RECOVERY_ATTEMPTS": "max_recovery_attempts",
    "STRATEGY_MAX_CONSECUTIVE_LOSSES": "max_consecutive_losses",
    "STRATEGY_MAX_DAILY_TRADES": "max_daily_trades",
    "STRATEGY_SEQUENCE_PROTECTION": "enable_sequence_protection",
    "STRATEGY_MARKET": "market",
    "STRATEGY_CONTRACT_TYPE": "contract_type",
    "STRATEGY_CURRENCY": "currency",
}

_ENV_BREAKER_FIELDS = {
    "CB_MAX_ABSOLUTE_LOSS": "max_absolute_loss",
    "CB_MAX_DAILY_LOSS": "max_daily_loss",
    "CB_MAX_CONSECUTIVE_LOSSES": "max_consecutive_losses",
    "CB_MAX_BALANCE_PERCENTAGE_LOSS": "max_balance_percentage_loss",
    "CB_RAPID_LOSS_TIME_WINDOW": "rapid_loss_time_window",
    "CB_RAPID_LOSS_THRESHOLD": "rapid_loss_threshold",
    "CB_COOLDOWN_PERIOD": "cooldown_period",
}


def strategy_config_from_env(environ: Optional[Mapping[str, str]] = None) -> StrategyConfig:
    """Load strategy configuration from STRATEGY_* and CB_* environment variables"""
    env = os.environ if environ is None else environ
    data: Dict[str, Any] = {
        field: env[name] for name, field in _ENV_FIELDS.items() if env.get(name)
    }
    breaker = {
        field: env[name] for name, field in _ENV_BREAKER_FIELDS.items() if env.get(name)
    }
    if breaker:
        data["circuit_breaker"] = breaker
    return strategy_config_from_mapping(data)
