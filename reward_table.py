"""
Reward Table - Expected payout percentage per contract family and stake tier

Deriv pays a different percentage depending on how much is staked; small
stakes get a worse return. Tables are piecewise: (min_stake, max_stake, percent)
sorted ascending, the last tier open-ended.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from errors import ConfigurationError, InvalidStake, UnsupportedContractFamily

logger = logging.getLogger(__name__)


class ContractFamily(str, Enum):
    DIGITDIFF = "DIGITDIFF"
    DIGITOVER = "DIGITOVER"
    DIGITUNDER = "DIGITUNDER"
    DIGITEVEN = "DIGITEVEN"
    DIGITODD = "DIGITODD"
    CALL = "CALL"
    PUT = "PUT"


@dataclass(frozen=True)
class RewardTier:
    min_stake: float
    max_stake: float
    reward_percent: float

    def contains(self, stake: float) -> bool:
        return self.min_stake <= stake <= self.max_stake


def _tiers(*percents: float) -> List[RewardTier]:
    bounds = [
        (0.35, 0.49), (0.50, 0.74), (0.75, 0.99), (1.00, 1.99),
        (2.00, 2.99), (3.00, 4.99), (5.00, math.inf),
    ]
    return [RewardTier(lo, hi, pct) for (lo, hi), pct in zip(bounds, percents)]


_DIGIT_TIERS = _tiers(5.71, 6.00, 8.00, 9.00, 9.50, 9.67, 9.67)
_PARITY_TIERS = _tiers(88.57, 92.00, 94.67, 95.00, 95.50, 95.33, 95.40)
_RISE_FALL_TIERS = _tiers(77.14, 78.00, 78.67, 79.00, 79.50, 79.33, 79.40)

DEFAULT_REWARD_TABLES: Dict[ContractFamily, List[RewardTier]] = {
    ContractFamily.DIGITDIFF: _DIGIT_TIERS,
    ContractFamily.DIGITOVER: _DIGIT_TIERS,
    ContractFamily.DIGITUNDER: _DIGIT_TIERS,
    ContractFamily.DIGITEVEN: _PARITY_TIERS,
    ContractFamily.DIGITODD: _PARITY_TIERS,
    ContractFamily.CALL: _RISE_FALL_TIERS,
    ContractFamily.PUT: _RISE_FALL_TIERS,
}


class RewardTable:
    """
    Stateless payout lookup.

    Stakes are rounded to cents before matching, so every amount the broker
    would accept falls into exactly one tier.
    """

    def __init__(self, tables: Optional[Dict[ContractFamily, Sequence[RewardTier]]] = None):
        source = DEFAULT_REWARD_TABLES if tables is None else tables
        self._tables: Dict[ContractFamily, tuple] = {}
        for family, tiers in source.items():
            family = ContractFamily(family)
            self._validate(family, tiers)
            self._tables[family] = tuple(tiers)

    @staticmethod
    def _validate(family: ContractFamily, tiers: Sequence[RewardTier]) -> None:
        if not tiers:
            raise ConfigurationError(f"Reward table for {family.value} is empty")
        previous: Optional[RewardTier] = None
        for tier in tiers:
            if tier.min_stake <= 0 or tier.max_stake < tier.min_stake:
                raise ConfigurationError(
                    f"Invalid tier {tier.min_stake}-{tier.max_stake} for {family.value}"
                )
            if tier.reward_percent <= 0:
                raise ConfigurationError(
                    f"Reward percent must be positive for {family.value}, got {tier.reward_percent}"
                )
            if previous is not None and tier.min_stake <= previous.max_stake:
                raise ConfigurationError(
                    f"Tiers for {family.value} overlap or are not sorted at {tier.min_stake}"
                )
            previous = tier

    def families(self) -> List[ContractFamily]:
        return list(self._tables.keys())

    def tiers(self, family: ContractFamily) -> List[RewardTier]:
        return list(self._table_for(family))

    def _table_for(self, family) -> tuple:
        try:
            key = ContractFamily(family)
        except ValueError:
            raise UnsupportedContractFamily(f"Unknown contract family: {family}")
        table = self._tables.get(key)
        if table is None:
            raise UnsupportedContractFamily(f"No reward table for {key.value}")
        return table

    def lookup(self, family: ContractFamily, stake: float) -> float:
        """
        Reward percentage for a stake.

        Stakes above the last tier get the last tier's percentage. Stakes below
        the first tier are under the broker minimum and rejected.
        """
        table = self._table_for(family)
        if stake is None or not math.isfinite(stake) or stake <= 0:
            raise InvalidStake(f"Stake must be a positive finite amount, got {stake}")

        amount = round(stake, 2)
        if amount < table[0].min_stake:
            raise InvalidStake(
                f"Stake {amount:.2f} is below the minimum {table[0].min_stake:.2f} "
                f"for {ContractFamily(family).value}"
            )
        for tier in table:
            if tier.contains(amount):
                return tier.reward_percent
        # Above the last tier (or a gap in a custom table): clamp upward
        last = table[-1]
        if amount > last.max_stake:
            return last.reward_percent
        raise InvalidStake(f"No reward tier covers stake {amount:.2f}")

    def expected_profit(self, family: ContractFamily, stake: float) -> float:
        return round(stake * self.lookup(family, stake) / 100, 2)
