"""
Main entry point for Sentinel Trader.
Live price feed, multi-strategy evaluation and simulated position management.
"""

import argparse
import asyncio
import sys

from loguru import logger

from sentinel_trader.bot import FeedSupervisor, StateBroadcaster, TradingEngine
from sentinel_trader.bot_logger import setup_logging
from sentinel_trader.utils.config_loader import ConfigLoader, lookup, require_sections


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Sentinel Trader - live feed, guarded strategies, simulated positions"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="settings",
        help="Configuration file name (without .yaml)",
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory holding the configuration files",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override the configured logging level",
    )
    parser.add_argument("--no-feed", action="store_true", help="Do not start the price feed")
    parser.add_argument("--no-server", action="store_true", help="Do not start the state server")
    parser.add_argument("--simulate", action="store_true", help="Use the simulated random-walk feed")
    return parser.parse_args()


def display_startup_banner(config: dict, engine: TradingEngine) -> None:
    logger.info("=" * 80)
    logger.info("SENTINEL TRADER")
    logger.info("=" * 80)
    for symbol, asset in engine.assets.items():
        logger.info(f"  * {symbol:<10} bot={'ON' if asset.bot_active else 'OFF'} strategies={asset.strategies}")
    logger.info(f"  Balance: {engine.account.balance:.2f} | Open trades: {len(engine.positions.open_trades())}")
    logger.info("=" * 80)


async def run(config: dict, args) -> None:
    engine = TradingEngine.from_config(config)
    engine.restore()
    display_startup_banner(config, engine)

    broadcaster = StateBroadcaster(
        engine.query_state,
        interval=float(lookup(config, "server.broadcast_interval_sec", 1.0)),
        control=engine.handle_control,
    )

    tasks = [engine.run(), broadcaster.run()]
    if not args.no_feed:
        supervisor = FeedSupervisor.from_config(config, engine.instruments, engine.submit_tick, simulate=args.simulate)
        tasks.append(supervisor.run())
    if not args.no_server:
        tasks.append(broadcaster.serve(
            lookup(config, "server.host", "0.0.0.0"),
            int(lookup(config, "server.port", 3001)),
        ))
    await asyncio.gather(*tasks)


def main():
    """Main entry point."""
    args = parse_arguments()

    config = ConfigLoader(args.config_dir).load(args.config)
    require_sections(config)
    if args.log_level:
        config.setdefault("logging", {})["level"] = args.log_level
    setup_logging(config)

    try:
        asyncio.run(run(config, args))
    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C) - open positions kept in state")
        sys.exit(0)
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
