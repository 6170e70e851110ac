# binary-roi-engine/engine.py
"""
Binary matching and ROI engine - main entry point.

Usage:
    python engine.py                      # run the daily scheduler
    python engine.py --once               # run today's cycle and exit
    python engine.py --once --date 2025-01-31
    python engine.py --once --roi-only    # expiry + ROI only
"""
import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import date, datetime

from config import Config, ConfigurationError
from core.db import check_database, setup_database
from models.listeners import register_all_listeners
from mlm_system.errors import EngineError
import background.mlm_scheduler as scheduler_module
from background.mlm_scheduler import DailyCycleScheduler

logger = logging.getLogger(__name__)


def setup_logging(log_file: str):
    """Configure root logging to stdout and a log file."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Binary matching and ROI accrual engine")
    parser.add_argument("--once", action="store_true", help="run one daily cycle and exit")
    parser.add_argument(
        "--date",
        type=lambda value: datetime.strptime(value, "%Y-%m-%d").date(),
        default=None,
        help="run date YYYY-MM-DD (with --once, default today)"
    )
    parser.add_argument("--roi-only", action="store_true", help="only expiry and ROI accrual")
    return parser.parse_args(argv)


async def initialize_engine() -> DailyCycleScheduler:
    """
    Load configuration, prepare the database and create the scheduler.

    Returns:
        DailyCycleScheduler (not started)
    """
    try:
        logger.info("=" * 60)
        logger.info("BINARY / ROI ENGINE INITIALIZATION")
        logger.info("=" * 60)

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 1: Validate critical configuration
        # ═══════════════════════════════════════════════════════════════════════
        await Config.validate_critical_keys()
        logger.info("✓ Configuration validated")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 2: Setup database and invariant listeners
        # ═══════════════════════════════════════════════════════════════════════
        check_database()
        setup_database()
        register_all_listeners()
        logger.info("✓ Database ready, listeners registered")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 3: Scheduler
        # ═══════════════════════════════════════════════════════════════════════
        scheduler_module.scheduler = DailyCycleScheduler()

        logger.info("=" * 60)
        logger.info("✅ INITIALIZATION COMPLETE")
        logger.info("=" * 60)

        return scheduler_module.scheduler

    except Exception as e:
        logger.critical(f"❌ Initialization failed: {e}", exc_info=True)
        raise


async def run_once(scheduler: DailyCycleScheduler, runDate: date, roiOnly: bool) -> int:
    """Run one cycle, print the summary as JSON. Returns the exit code."""
    try:
        summary = await scheduler.triggerNow(runDate, roiOnly)
    except EngineError as e:
        logger.error(f"Daily cycle failed: {e}", exc_info=True)
        return 1

    print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.errors == 0 else 2


async def run_forever(scheduler: DailyCycleScheduler):
    """Start the scheduler and wait for SIGINT/SIGTERM."""
    stopEvent = asyncio.Event()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopEvent.set)
        except NotImplementedError:
            # Signal handlers not available on Windows
            logger.warning(f"Signal handler for {sig} not available on this platform")

    await scheduler.start()
    try:
        await stopEvent.wait()
    finally:
        await scheduler.stop()


async def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        Config.initialize_from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(Config.get(Config.LOG_FILE, "binary_engine.log"))

    try:
        scheduler = await initialize_engine()

        if args.once:
            return await run_once(scheduler, args.date or scheduler.today(), args.roi_only)

        await run_forever(scheduler)
        return 0

    except KeyboardInterrupt:
        logger.info("⚠️ Engine stopped by user")
        return 0
    except Exception as e:
        logger.critical(f"❌ Fatal error: {e}", exc_info=True)
        return 1
    finally:
        logger.info("👋 Engine shutdown complete")


if __name__ == '__main__':
    sys.exit(asyncio.run(main()))
