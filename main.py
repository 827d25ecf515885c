#!/usr/bin/env python3
"""
Trade Decision Engine - command line entry point

  python main.py simulate --trades 200 --balance 500 --seed 7
  python main.py show-config --config strategy.json
"""

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from config import AppConfig
from decision_engine import DecisionEngine
from digit_policy import RandomDigitPolicy
from enhanced_logging import setup_logging
from errors import TradingEngineError
from paper_trading import PaperTradingExecutor, SimulatedClock, run_simulation
from strategy_config import load_strategy_config, strategy_config_from_env

logger = logging.getLogger(__name__)


def load_strategy(path):
    if path:
        return load_strategy_config(path)
    return strategy_config_from_env()


def cmd_simulate(args, app_config: AppConfig) -> int:
    strategy = load_strategy(args.config or app_config.strategy_file)
    seed = args.seed if args.seed is not None else app_config.simulation_seed
    balance = args.balance if args.balance is not None else app_config.simulation_balance
    trades = args.trades if args.trades is not None else app_config.simulation_trades

    clock = SimulatedClock()
    engine = DecisionEngine(strategy, digit_policy=RandomDigitPolicy(seed), clock=clock)
    executor = PaperTradingExecutor(
        initial_balance=balance,
        win_rate=args.win_rate,
        seed=None if seed is None else seed + 1,
        clock=clock,
    )
    result = run_simulation(
        engine, executor,
        max_trades=trades,
        clock=clock,
        wait_out_cooldowns=args.wait_cooldowns,
    )

    report = result.to_dict()
    report["statistics"] = engine.get_statistics().to_dict()
    print(json.dumps(report, indent=2))
    return 0


def cmd_show_config(args, app_config: AppConfig) -> int:
    strategy = load_strategy(args.config or app_config.strategy_file)
    print(json.dumps({"app": app_config.to_dict(), "strategy": strategy.to_dict()}, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="1-3-2-6 trade decision and risk engine")
    parser.add_argument("--app-config", type=str, help="JSON file with process settings")
    parser.add_argument("--log-level", type=str, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Run a paper trading simulation")
    sim.add_argument("--config", type=str, help="Strategy config JSON (default: STRATEGY_* env)")
    sim.add_argument("--trades", type=int, help="Maximum number of trades")
    sim.add_argument("--balance", type=float, help="Starting paper balance")
    sim.add_argument("--win-rate", type=float, help="Fixed win probability instead of simulated digits")
    sim.add_argument("--seed", type=int, help="Random seed for reproducible runs")
    sim.add_argument("--wait-cooldowns", action="store_true",
                     help="Advance the simulated clock through cooldowns instead of stopping")
    sim.set_defaults(func=cmd_simulate)

    show = sub.add_parser("show-config", help="Print the effective configuration")
    show.add_argument("--config", type=str, help="Strategy config JSON (default: STRATEGY_* env)")
    show.set_defaults(func=cmd_show_config)

    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        app_config = AppConfig.from_file(args.app_config) if args.app_config else AppConfig.from_env()
        if args.log_level:
            app_config.log_level = args.log_level.upper()
        setup_logging(app_config.log_level, app_config.log_file, app_config.structured_logs)
        return args.func(args, app_config)
    except TradingEngineError as e:
        logger.error(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
