"""
Errors - Exception types raised by the trade decision engine

Policy refusals (limits reached, breaker tripped, low balance) are never
raised; they come back as a TradeDecision with should_trade=False.
"""


class TradingEngineError(Exception):
    """Base class for engine errors"""
    pass


class ConfigurationError(TradingEngineError, ValueError):
    """Invalid strategy or risk configuration, raised at construction"""
    pass


class InvariantViolation(TradingEngineError):
    """Internal state would become invalid (negative stake, NaN amounts)"""
    pass


class InvalidProfitValue(InvariantViolation):
    """Reported trade profit is missing or not a finite number"""
    pass


class RewardLookupError(TradingEngineError):
    """Reward table has no answer for the requested contract/stake"""
    pass


class UnsupportedContractFamily(RewardLookupError):
    pass


class InvalidStake(RewardLookupError):
    pass
