from prometheus_client import Counter, Gauge, Histogram, start_http_server
from loguru import logger

# Ingestion
BLOCKS_PROCESSED = Counter(
    'evm_indexer_heights_committed_total',
    'Heights committed to the canonical store',
    ['chain']
)

LATEST_PROCESSED_BLOCK = Gauge(
    'evm_indexer_cursor_height',
    'Sync cursor, the highest fully committed height',
    ['chain']
)

LATEST_BLOCK_PROCESSING_TIME = Gauge(
    'evm_indexer_last_commit_seconds',
    'Validation and commit time of the most recent height',
    ['chain']
)

BLOCK_PROCESSING_TIME = Histogram(
    'evm_indexer_assembly_seconds',
    'Time to turn a block body and its receipts into records',
    ['chain'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 1.0]
)

SYNC_STATE = Gauge(
    'evm_indexer_sync_state',
    'Sync engine state, 1 for the active one',
    ['chain', 'state']
)

# Upstream head
CHAIN_TIP_BLOCK = Gauge(
    'evm_indexer_chain_tip_height',
    'Latest height reported by the node',
    ['chain']
)

CHAIN_TIP_LAG = Gauge(
    'evm_indexer_chain_tip_lag_blocks',
    'Heights between the node tip and the sync cursor',
    ['chain']
)

# Reorgs
REORGS_DETECTED = Counter(
    'evm_indexer_reorgs_total',
    'Reorganisations detected through parent hash mismatch',
    ['chain']
)

BLOCKS_ROLLED_BACK = Counter(
    'evm_indexer_heights_rolled_back_total',
    'Committed heights removed while walking back to a common ancestor',
    ['chain']
)

# JSON-RPC
RPC_REQUESTS = Counter(
    'evm_indexer_rpc_requests_total',
    'Successful JSON-RPC calls',
    ['chain', 'method']
)

RPC_ERRORS = Counter(
    'evm_indexer_rpc_errors_total',
    'Failed JSON-RPC calls, before any retry',
    ['chain', 'method']
)

RPC_LATENCY = Histogram(
    'evm_indexer_rpc_latency_seconds',
    'JSON-RPC round trip time',
    ['chain', 'method'],
    buckets=[0.025, 0.05, 0.1, 0.2, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)


def init_chain_metrics(chain_name: str) -> None:
    """Create every per-chain series up front so dashboards see zeros instead of gaps"""
    for metric in (BLOCKS_PROCESSED, REORGS_DETECTED, BLOCKS_ROLLED_BACK):
        metric.labels(chain=chain_name).inc(0)
    for gauge in (LATEST_PROCESSED_BLOCK, LATEST_BLOCK_PROCESSING_TIME, CHAIN_TIP_BLOCK, CHAIN_TIP_LAG):
        gauge.labels(chain=chain_name).set(0)
    logger.info(f"Initialized metrics for chain: {chain_name}")


def start_metrics_server(port: int = 8000, addr: str = '0.0.0.0'):
    """Expose /metrics for Prometheus to scrape

    Args:
        port (int): Port to listen on
        addr (str): Address to bind to
    """
    logger.info(f"Starting Prometheus metrics server on {addr}:{port}")
    start_http_server(port, addr)
