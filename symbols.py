"""
Symbol Configuration - Markets the decision engine may trade on
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class SymbolConfig:
    """Configuration for a trading symbol"""
    symbol: str
    name: str
    min_stake: float
    max_stake: float
    min_duration: int
    max_duration: int
    duration_unit: str  # 't' for ticks
    supports_digits: bool = True


def _volatility(symbol: str, name: str) -> SymbolConfig:
    return SymbolConfig(
        symbol=symbol,
        name=name,
        min_stake=0.35,
        max_stake=50000,
        min_duration=1,
        max_duration=10,
        duration_unit="t",
    )


# Synthetic indices, tick durations only
SYMBOLS: Dict[str, SymbolConfig] = {
    "R_10": _volatility("R_10", "Volatility 10 Index"),
    "R_25": _volatility("R_25", "Volatility 25 Index"),
    "R_50": _volatility("R_50", "Volatility 50 Index"),
    "R_75": _volatility("R_75", "Volatility 75 Index"),
    "R_100": _volatility("R_100", "Volatility 100 Index"),
    "1HZ10V": _volatility("1HZ10V", "Volatility 10 (1s) Index"),
    "1HZ25V": _volatility("1HZ25V", "Volatility 25 (1s) Index"),
    "1HZ50V": _volatility("1HZ50V", "Volatility 50 (1s) Index"),
    "1HZ75V": _volatility("1HZ75V", "Volatility 75 (1s) Index"),
    "1HZ100V": _volatility("1HZ100V", "Volatility 100 (1s) Index"),
}

DEFAULT_SYMBOL = "1HZ100V"


def get_symbol_config(symbol: str) -> Optional[SymbolConfig]:
    """Get configuration for a specific symbol"""
    return SYMBOLS.get(symbol)


def get_all_symbols() -> List[str]:
    return list(SYMBOLS.keys())


def is_known_symbol(symbol: str) -> bool:
    return symbol in SYMBOLS


def validate_duration_for_symbol(symbol: str, duration: int, unit: str) -> Optional[Tuple[int, str]]:
    """Returns (duration, unit) if the symbol accepts it, None otherwise"""
    config = get_symbol_config(symbol)
    if not config or unit != config.duration_unit:
        return None
    if config.min_duration <= duration <= config.max_duration:
        return (duration, unit)
    return None


def get_default_duration(symbol: str) -> Tuple[int, str]:
    """Get default duration for a symbol (duration, unit)"""
    config = get_symbol_config(symbol)
    if config:
        return (config.min_duration, config.duration_unit)
    return (1, "t")
