"""Main entry point for the leverage rebalancer."""
import argparse
import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

from rebalancer.advisory.client import AdvisoryClient
from rebalancer.bundles.builder import BundleBuilder
from rebalancer.bundles.router import RouteClient
from rebalancer.collectors.chain.connection import ChainConnection
from rebalancer.collectors.http import JsonHttpClient
from rebalancer.collectors.market_signal import MarketSignalFetcher
from rebalancer.collectors.position_reader import PositionReader
from rebalancer.core.chat_log import ChatLogStore
from rebalancer.core.config import Config, ConfigError, load_config
from rebalancer.core.errors import SessionError
from rebalancer.core.executor import TransactionExecutor
from rebalancer.core.notification_bus import NotificationBus
from rebalancer.core.session_manager import SessionManager

logger = logging.getLogger(__name__)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="python -m rebalancer",
        description="Leverage Rebalancer - oracle-driven leverage management for lending positions",
    )

    parser.add_argument(
        "-c", "--config",
        default="config/default.yaml",
        help="Path to configuration file (default: config/default.yaml)",
    )

    parser.add_argument(
        "-l", "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "-a", "--account",
        action="append",
        default=[],
        dest="accounts",
        help="Account to manage; repeat for several (default: accounts from config)",
    )

    return parser.parse_args(args)


def setup_logging(level: str) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level),
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from external libraries
    for name in ("urllib3", "aiohttp", "web3"):
        logging.getLogger(name).setLevel(logging.WARNING)


async def run(config: Config, accounts: list[str]) -> int:
    """Wire components, start one session per account and run until signalled.

    Returns:
        Exit code
    """
    connection = ChainConnection(
        rpc_url=config.chain.rpc_url,
        private_key=config.chain.private_key,
        chain_id=config.chain.chain_id,
        gas_buffer=config.chain.gas_buffer,
    )
    if not await connection.connect():
        logger.error("Failed to connect to the JSON-RPC node")
        return 1

    signal_http = JsonHttpClient(timeout=config.signals.timeout)
    oracle_http = JsonHttpClient(timeout=config.advisory.response_timeout)
    router_http = JsonHttpClient(timeout=config.router.timeout)

    bus = NotificationBus()
    chat_log = ChatLogStore(config.chat_log.path)
    bus.subscribe(["*"], chat_log.append)

    manager = SessionManager(
        signal_fetcher=MarketSignalFetcher(
            volatility_url=config.signals.volatility_url,
            state_url=config.signals.state_url,
            http=signal_http,
            timeout=config.signals.timeout,
        ),
        position_reader=PositionReader(
            connection=connection,
            pool_address=config.protocol.pool,
            data_provider_address=config.protocol.data_provider,
            assets=list(config.assets.values()),
            base_currency_decimals=config.protocol.base_currency_decimals,
        ),
        advisory_client=AdvisoryClient(
            url=config.advisory.url,
            suggested_amounts=config.advisory.suggested_amounts,
            http=oracle_http,
            response_timeout=config.advisory.response_timeout,
            settle_seconds=config.advisory.settle_seconds,
            user_id=config.advisory.user_id,
            user_name=config.advisory.user_name,
        ),
        bundle_builder=BundleBuilder.from_config(config),
        executor=TransactionExecutor(
            connection=connection,
            router=RouteClient(
                base_url=config.router.base_url,
                chain_id=connection.chain_id,
                api_key=config.router.api_key,
                http=router_http,
            ),
            receipt_timeout=config.chain.receipt_timeout,
        ),
        bus=bus,
        interval_seconds=config.scheduler.interval_seconds,
        chat_log=chat_log,
    )

    # Set up signal handlers for graceful shutdown
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, shutdown.set)

    try:
        for account in accounts:
            try:
                session_id = await manager.start_session(account)
                logger.info(f"Session {session_id} managing {account}")
            except SessionError as e:
                logger.error(f"Could not start session for {account}: {e}")

        if not manager.is_running:
            logger.error("No sessions running")
            return 1

        await shutdown.wait()
        logger.info("Shutdown requested")
        return 0

    finally:
        await manager.stop_all()
        for http in (signal_http, oracle_http, router_http):
            await http.close()


def main(args: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        args: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parsed_args = parse_args(args)

    setup_logging(parsed_args.log_level)
    load_dotenv()

    logger.info("Leverage rebalancer starting...")
    logger.info(f"Config: {parsed_args.config}")

    try:
        config = load_config(parsed_args.config)

        accounts = parsed_args.accounts or config.accounts
        if not accounts:
            logger.error("No accounts to manage; pass --account or set accounts in config")
            return 1

        return asyncio.run(run(config, accounts))

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
