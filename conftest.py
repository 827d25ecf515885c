import logging
from datetime import datetime

import pytest

from strategy_config import CircuitBreakerConfig, StrategyConfig


class FakeClock:
    """Wall clock that only moves when a test says so"""

    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    # Midday, so small advances never cross a calendar day
    return FakeClock(datetime(2024, 3, 15, 12, 0, 0).timestamp())


@pytest.fixture
def config():
    return StrategyConfig(initial_stake=1, profit_threshold=1000, loss_threshold=500)


def make_config(breaker=None, **overrides) -> StrategyConfig:
    params = dict(initial_stake=1, profit_threshold=1000, loss_threshold=500)
    params.update(overrides)
    if breaker is not None:
        params["circuit_breaker"] = CircuitBreakerConfig(**breaker)
    return StrategyConfig(**params)


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
