import asyncio
import signal
import sys

from dynaconf.validator import ValidationError
from loguru import logger

from evm_indexer.api import AiohttpServer, get_aiohttp_app
from evm_indexer.config import SyncConfig
from evm_indexer.metrics import init_chain_metrics, start_metrics_server
from evm_indexer.rpc_client import EVMChainClient
from evm_indexer.store import CanonicalStore, create_db_engine, init_db
from evm_indexer.sync_engine import SyncEngine, SyncState
from evm_indexer.utils import load_config


def setup_logging(level: str, log_file: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)
    # Save logs to file
    logger.add(log_file, level=level, rotation="100 MB", retention="10 days")


async def main() -> int:
    config = load_config()
    setup_logging(config.logging.level, config.logging.file)

    sync_config = SyncConfig.from_settings(config)
    logger.info(f"Processing {sync_config.chain_name} chain")

    init_chain_metrics(sync_config.chain_name)
    if config.metrics.enabled:
        start_metrics_server(config.metrics.port, addr=config.metrics.host)

    db_engine = create_db_engine(config.storage.database_url)
    init_db(db_engine)
    store = CanonicalStore(db_engine, sync_config.chain_name)
    client = EVMChainClient(sync_config.rpc_urls, sync_config.chain_name, config.chain.request_timeout)
    engine = SyncEngine(client, store, sync_config)

    shutdown = asyncio.Event()

    def request_shutdown() -> None:
        logger.info("Shutdown signal received")
        engine.stop()
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_shutdown)

    api_server = None
    if config.api.enabled:
        api_server = AiohttpServer(get_aiohttp_app(store, engine), config.api.host, config.api.port)
        await api_server.start()

    try:
        await engine.run()
        if engine.state is SyncState.ERROR and api_server is not None and not shutdown.is_set():
            # Keep serving the last committed state until an operator stops the process
            logger.error("Sync engine halted, read API stays up until shutdown")
            await shutdown.wait()
    finally:
        if api_server is not None:
            await api_server.stop()
        db_engine.dispose()

    return 1 if engine.state is SyncState.ERROR else 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Program interrupted by user. Exiting.")
    except (FileNotFoundError, ValidationError, KeyError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
