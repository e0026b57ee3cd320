import asyncio
import time
from typing import List

import aiohttp
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import (
    BlockNotFound,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
    Web3RPCError,
)

from evm_indexer.exceptions import (
    BlockNotFoundError,
    IndexerError,
    MalformedResponseError,
    TransientUpstreamError,
)
from evm_indexer.metrics import RPC_ERRORS, RPC_LATENCY, RPC_REQUESTS

# Substrings of JSON-RPC error messages that providers use for throttling or overload
TRANSIENT_RPC_MARKERS = (
    "rate limit",
    "too many requests",
    "limit exceeded",
    "timeout",
    "timed out",
    "header not found",
    "try again",
)

RPC_METHODS = ('get_block_number', 'get_block', 'get_transaction_receipt')


def classify_error(error: Exception) -> IndexerError:
    """Map an exception raised by web3/aiohttp onto the indexer's error taxonomy"""
    if isinstance(error, IndexerError):
        return error
    if isinstance(error, aiohttp.ClientResponseError):
        if error.status == 429 or error.status >= 500:
            return TransientUpstreamError(f"HTTP {error.status}: {error.message}")
        return MalformedResponseError(f"HTTP {error.status}: {error.message}")
    if isinstance(error, (asyncio.TimeoutError, aiohttp.ClientError, ConnectionError, OSError, TimeExhausted)):
        return TransientUpstreamError(f"{type(error).__name__}: {error}")
    if isinstance(error, Web3RPCError):
        message = str(error).lower()
        if any(marker in message for marker in TRANSIENT_RPC_MARKERS):
            return TransientUpstreamError(f"RPC error: {error}")
        return MalformedResponseError(f"RPC error: {error}")
    if isinstance(error, (Web3Exception, ValueError, TypeError)):
        return MalformedResponseError(f"{type(error).__name__}: {error}")
    return MalformedResponseError(f"Unexpected {type(error).__name__}: {error}")


class EVMChainClient:
    """Async JSON-RPC client for the three calls the sync engine needs.

    Every failure surfaces as an IndexerError subclass so the retry policy can
    tell transient failures from permanent ones. No retrying happens here.
    """

    def __init__(self, rpc_urls: List[str], chain_name: str, request_timeout: float = 30) -> None:
        if not rpc_urls:
            raise ValueError("At least one RPC URL is required")
        logger.info(f"Initializing chain client for {chain_name} with RPC URL: {rpc_urls[0]}")
        self.rpc_urls = list(rpc_urls)
        self.chain_name = chain_name
        self.request_timeout = request_timeout
        self.current_rpc_index = 0
        self.w3 = self._connect(self.rpc_urls[0])

        # Initialize RPC metrics
        for method in RPC_METHODS:
            RPC_REQUESTS.labels(chain=chain_name, method=method).inc(0)
            RPC_ERRORS.labels(chain=chain_name, method=method).inc(0)

    def _connect(self, url: str) -> AsyncWeb3:
        return AsyncWeb3(AsyncHTTPProvider(
            url,
            request_kwargs={'timeout': aiohttp.ClientTimeout(total=self.request_timeout)},
        ))

    def _rotate_rpc(self) -> bool:
        """Rotate to the next RPC URL in the list
        Returns:
            bool: True if there is another RPC to rotate to
        """
        if len(self.rpc_urls) <= 1:
            return False

        self.current_rpc_index = (self.current_rpc_index + 1) % len(self.rpc_urls)
        new_url = self.rpc_urls[self.current_rpc_index]
        logger.info(f"Switching to RPC URL: {new_url}")
        self.w3 = self._connect(new_url)
        return True

    def _failed(self, method: str, error: Exception, context: str) -> IndexerError:
        RPC_ERRORS.labels(chain=self.chain_name, method=method).inc()
        classified = classify_error(error)
        logger.error(f"Failed to {context}: {type(error).__name__}: {error}")
        if isinstance(classified, TransientUpstreamError):
            self._rotate_rpc()
        return classified

    async def get_block_number(self) -> int:
        start_time = time.time()
        try:
            block_number = await self.w3.eth.get_block_number()
        except Exception as e:
            raise self._failed('get_block_number', e, "get block number") from e
        RPC_REQUESTS.labels(chain=self.chain_name, method='get_block_number').inc()
        RPC_LATENCY.labels(chain=self.chain_name, method='get_block_number').observe(time.time() - start_time)
        return block_number

    async def get_block(self, block_number: int, full_transactions: bool = True) -> dict:
        start_time = time.time()
        try:
            logger.debug(f"Fetching block with number: {block_number}")
            raw_block = await self.w3.eth.get_block(block_number, full_transactions=full_transactions)
        except BlockNotFound as e:
            RPC_ERRORS.labels(chain=self.chain_name, method='get_block').inc()
            logger.warning(f"Block {block_number} not found")
            raise BlockNotFoundError(block_number) from e
        except Exception as e:
            raise self._failed('get_block', e, f"get block {block_number}") from e
        RPC_REQUESTS.labels(chain=self.chain_name, method='get_block').inc()
        RPC_LATENCY.labels(chain=self.chain_name, method='get_block').observe(time.time() - start_time)
        return raw_block

    async def get_transaction_receipt(self, transaction_hash: str) -> dict | None:
        start_time = time.time()
        try:
            receipt = await self.w3.eth.get_transaction_receipt(transaction_hash)
        except TransactionNotFound:
            RPC_ERRORS.labels(chain=self.chain_name, method='get_transaction_receipt').inc()
            logger.warning(f"Receipt for transaction {transaction_hash} not found")
            return None
        except Exception as e:
            raise self._failed(
                'get_transaction_receipt', e, f"get receipt for transaction {transaction_hash}"
            ) from e
        RPC_REQUESTS.labels(chain=self.chain_name, method='get_transaction_receipt').inc()
        RPC_LATENCY.labels(chain=self.chain_name, method='get_transaction_receipt').observe(time.time() - start_time)
        return receipt
