import asyncio
import click
import logging
import os
import sys

from dotenv import load_dotenv
from eth_account import Account
from prometheus_client import CollectorRegistry
from web3 import AsyncHTTPProvider, AsyncWeb3

from flasharb.config.settings import ArbitrageConfig, ConfigManager
from flasharb.contracts.client import ArbitrageContractClient
from flasharb.core.engine import ArbitrageEngine
from flasharb.models.token import TokenRegistry
from flasharb.protocols import AaveV2LendingPool, build_adapters
from flasharb.services.gas_strategy import build_gas_strategy
from flasharb.services.metrics import MetricsService
from flasharb.services.mev_protection import FlashbotsRelay
from flasharb.services.opportunity_log import CsvOpportunitySink, LoggingOpportunitySink, MultiSink
from flasharb.services.path_finder import ArbitrageScanner
from flasharb.services.price_feed import CoinGeckoPriceProvider
from flasharb.services.transaction_executor import TransactionExecutor
from flasharb.services.validator import OpportunityValidator

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_engine(
    config: ArbitrageConfig,
    dry_run: bool,
    metrics_port: int = None,
    csv_log: str = None
) -> ArbitrageEngine:
    """Wire every service from configuration."""
    web3 = AsyncWeb3(AsyncHTTPProvider(config.network.rpc_url))
    tokens = TokenRegistry.from_config(config.tokens)
    gas_strategy = build_gas_strategy(config.gas)
    price_provider = CoinGeckoPriceProvider(api_key=os.getenv("COINGECKO_API_KEY"))

    scanner = ArbitrageScanner(
        build_adapters(config, web3, tokens),
        OpportunityValidator.from_config(gas_strategy, config.validator),
        price_provider,
        tokens,
        config.scanner
    )

    executor = client = None
    if not dry_run:
        private_key = os.getenv("PRIVATE_KEY")
        if not private_key:
            raise click.UsageError("PRIVATE_KEY must be set unless running with --dry-run")
        if not config.contract.address:
            raise click.UsageError("contract.address (or ARBITRAGE_CONTRACT) must be set")

        account = Account.from_key(private_key)
        relay = None
        if config.executor.use_private_relay:
            relay = FlashbotsRelay(web3, account, config.network.relay_url)
        executor = TransactionExecutor(
            web3,
            account,
            gas_strategy,
            config.executor,
            relay=relay,
            receipt_timeout=config.network.receipt_timeout
        )
        client = ArbitrageContractClient(web3, config.contract.address)
        logger.info(f"Executing from {account.address} via {client.address}")

    sink = LoggingOpportunitySink()
    if csv_log:
        sink = MultiSink(sink, CsvOpportunitySink(csv_log))

    return ArbitrageEngine(
        web3,
        scanner,
        price_provider,
        tokens,
        executor=executor,
        client=client,
        lending_pool=AaveV2LendingPool(web3, config.contract.lending_pool),
        metrics=MetricsService(CollectorRegistry(), port=metrics_port),
        sink=sink,
        config=config,
        dry_run=dry_run
    )


@click.command()
@click.option(
    "--config",
    default="config/arbitrage.yaml",
    help="Path to configuration file"
)
@click.option("--once", is_flag=True, help="Run a single scan tick and exit")
@click.option("--dry-run", is_flag=True, help="Scan and validate without submitting transactions")
@click.option("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port")
@click.option("--csv-log", default=None, help="Append opportunity records to this CSV file")
def main(config: str, once: bool, dry_run: bool, metrics_port: int, csv_log: str):
    """Run the flash-loan arbitrage bot."""
    load_dotenv()

    try:
        config_manager = ConfigManager(config)
        engine = build_engine(config_manager.config, dry_run, metrics_port, csv_log)

        if once:
            asyncio.run(engine.run_tick())
        else:
            asyncio.run(engine.run())

    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except click.UsageError:
        raise
    except Exception as e:
        logger.error(f"Bot crashed: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
