"""
Main entry point for the keeper service.
Validates configuration, prints the banner and runs the keeper scheduler.
"""

import asyncio
import signal
import sys
from typing import Optional

import structlog

from substack_keeper.core.config import Settings, settings as default_settings
from substack_keeper.core.exceptions import ConfigurationError
from substack_keeper.core.logging import setup_logging
from substack_keeper.services.chain_query import ChainQueryAdapter
from substack_keeper.services.stacks.api_client import StacksApiClient
from substack_keeper.services.stacks.transaction import StacksPrivateKey
from substack_keeper.services.transaction_submitter import TransactionSubmitter
from .keeper_scheduler import KeeperScheduler, format_stx

logger = structlog.get_logger(__name__)

EXIT_CONFIGURATION_ERROR = 1


def ensure_signing_key(config: Settings):
    """Exit the process unless a usable operator key is configured."""
    if not config.has_signing_key:
        logger.critical(
            "KEEPER_PRIVATE_KEY not configured",
            hint="Copy .env.example to .env and add your private key"
        )
        sys.exit(EXIT_CONFIGURATION_ERROR)

    try:
        StacksPrivateKey(config.keeper_private_key)
    except ConfigurationError as e:
        logger.critical("KEEPER_PRIVATE_KEY is invalid", error=e.message)
        sys.exit(EXIT_CONFIGURATION_ERROR)


def print_banner(config: Settings):
    print("")
    print("========================================")
    print("   SubStack Protocol - Keeper Service")
    print("========================================")
    print(f"Network:        {config.stacks_network}")
    print(f"Check Interval: {config.check_interval} minutes")
    print(f"Batch Size:     {config.batch_size}")
    print(f"Min Profit:     {format_stx(config.min_profit)} STX")
    print("========================================")
    print("")


def build_scheduler(config: Settings, api: StacksApiClient) -> KeeperScheduler:
    """Wire the query adapter, submitter and scanner into a scheduler."""
    queries = ChainQueryAdapter(api, config)
    submitter = TransactionSubmitter(api, config)
    return KeeperScheduler(queries, submitter, config=config)


async def main(config: Optional[Settings] = None):
    """Run the keeper until SIGINT/SIGTERM."""
    config = config or default_settings
    setup_logging(config=config)
    ensure_signing_key(config)
    print_banner(config)

    async with StacksApiClient(config) as api:
        scheduler = build_scheduler(config, api)

        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, shutting down...")
            scheduler.request_stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass

        try:
            await scheduler.start()
            logger.info(
                "Keeper running",
                check_interval_minutes=config.check_interval
            )
            await scheduler.wait_closed()
        finally:
            await scheduler.stop()


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")


if __name__ == "__main__":
    run()
