"""
Digit Policy - Chooses the predicted last digit for digit contracts

The engine never calls the global random module; a policy object is passed
in so a session (or a test) controls exactly which digits get predicted.
"""

import random
from typing import Iterable, Optional, Protocol

from errors import ConfigurationError
from reward_table import ContractFamily


def _check_digit(digit: int) -> int:
    if not isinstance(digit, int) or isinstance(digit, bool) or not 0 <= digit <= 9:
        raise ConfigurationError(f"Digit must be an integer 0-9, got {digit!r}")
    return digit


class DigitPolicy(Protocol):
    def next_digit(self) -> int:
        ...


class RandomDigitPolicy:
    """Uniform random digit from a private, optionally seeded generator"""

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def next_digit(self) -> int:
        return self._rng.randint(0, 9)


class FixedDigitPolicy:
    def __init__(self, digit: int):
        self.digit = _check_digit(digit)

    def next_digit(self) -> int:
        return self.digit


class CyclingDigitPolicy:
    """Repeats a fixed list of digits in order"""

    def __init__(self, digits: Iterable[int]):
        self.digits = [_check_digit(d) for d in digits]
        if not self.digits:
            raise ConfigurationError("CyclingDigitPolicy needs at least one digit")
        self._index = 0

    def next_digit(self) -> int:
        digit = self.digits[self._index]
        self._index = (self._index + 1) % len(self.digits)
        return digit


def barrier_for(family: ContractFamily, policy: DigitPolicy, default_barrier: int = 5) -> Optional[int]:
    """
    Barrier or prediction for a contract.

    DIGITDIFF predicts a digit from the policy, DIGITOVER/DIGITUNDER use the
    configured barrier, everything else takes none.
    """
    family = ContractFamily(family)
    if family == ContractFamily.DIGITDIFF:
        return _check_digit(policy.next_digit())
    if family in (ContractFamily.DIGITOVER, ContractFamily.DIGITUNDER):
        return _check_digit(default_barrier)
    return None
