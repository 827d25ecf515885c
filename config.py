"""
Configuration - Process-level settings for running the engine
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from errors import ConfigurationError

logger = logging.getLogger(__name__)


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AppConfig:
    """
    Runtime settings around the engine (logging, where the strategy lives,
    simulation defaults). Strategy limits themselves live in StrategyConfig.
    """
    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    structured_logs: bool = False

    # Strategy
    strategy_file: Optional[str] = None

    # Paper trading
    simulation_balance: float = 1000.0
    simulation_trades: int = 100
    simulation_seed: Optional[int] = None

    def __post_init__(self):
        level = self.log_level.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
        self.log_level = level
        if self.simulation_balance <= 0:
            raise ConfigurationError("simulation_balance must be positive")
        if self.simulation_trades <= 0:
            raise ConfigurationError("simulation_trades must be positive")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load configuration from environment variables"""
        seed = os.environ.get("SIMULATION_SEED")
        try:
            return cls(
                log_level=os.environ.get("LOG_LEVEL", "INFO"),
                log_file=os.environ.get("LOG_FILE") or None,
                structured_logs=_env_bool(os.environ.get("STRUCTURED_LOGS"), False),
                strategy_file=os.environ.get("STRATEGY_FILE") or None,
                simulation_balance=float(os.environ.get("SIMULATION_BALANCE", "1000")),
                simulation_trades=int(os.environ.get("SIMULATION_TRADES", "100")),
                simulation_seed=int(seed) if seed else None,
            )
        except ValueError as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid environment setting: {e}") from e

    @classmethod
    def from_file(cls, path: str) -> "AppConfig":
        """Load configuration from JSON file, falling back to defaults if missing"""
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from e

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        return cls(**data)

    def save(self, path: str):
        """Save configuration to JSON file"""
        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
