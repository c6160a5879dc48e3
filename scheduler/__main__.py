import argparse
import asyncio
import logging
import signal
import sys

from db.config import engine
from models.mysql_models import Base
from panel.api_client import get_panel_client, close_panel_client
from panel.config import panel_config

from .billing_scheduler import run_billing_sweep, create_scheduler
from .config import scheduler_config


logging.basicConfig(
    level=getattr(logging, scheduler_config.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_scheduler():
    scheduler = create_scheduler()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("Checking panel health...")
    if not await get_panel_client().health_check():
        logger.error(f"Panel not reachable at {panel_config.base_url}")
        logger.info("Starting anyway, suspensions will be retried on the next sweep")

    try:
        await scheduler.start()
        await stop_event.wait()
    finally:
        logger.info("Initiating graceful shutdown...")
        await scheduler.stop()
        await close_panel_client()


async def run_single_sweep():
    try:
        return await run_billing_sweep()
    finally:
        await close_panel_client()


async def check_health():
    try:
        return await get_panel_client().health_check()
    finally:
        await close_panel_client()


def main():
    parser = argparse.ArgumentParser(
        description="Prepaid hourly billing worker"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("start", help="Run the billing sweep every interval")
    subparsers.add_parser("sweep", help="Run one billing sweep and exit")
    subparsers.add_parser("health", help="Check panel API health")

    args = parser.parse_args()

    if args.command == "start":
        Base.metadata.create_all(bind=engine)
        logger.info("Starting billing worker...")
        logger.info(f"Panel: {panel_config.base_url}")
        asyncio.run(run_scheduler())

    elif args.command == "sweep":
        Base.metadata.create_all(bind=engine)
        report = asyncio.run(run_single_sweep())
        print(
            f"candidates={report.candidates} charged={report.charged} paused={report.paused} "
            f"failed={report.failed} skipped={report.skipped} coins={report.coins_charged}"
        )
        if report.failed:
            sys.exit(1)

    elif args.command == "health":
        healthy = asyncio.run(check_health())
        if healthy:
            print(f"✓ Panel at {panel_config.base_url} is healthy")
        else:
            print(f"✗ Panel at {panel_config.base_url} is not reachable")
            sys.exit(1)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
