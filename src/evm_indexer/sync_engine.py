import asyncio
import time
from dataclasses import replace
from enum import Enum
from typing import Optional

from loguru import logger

from evm_indexer.assembler import BlockAssembler, parse_header
from evm_indexer.config import SyncConfig
from evm_indexer.data_types import BlockData, BlockHeader
from evm_indexer.exceptions import RetryAbortedError, SyncError
from evm_indexer.metrics import (
    BLOCKS_PROCESSED,
    CHAIN_TIP_BLOCK,
    CHAIN_TIP_LAG,
    LATEST_BLOCK_PROCESSING_TIME,
    LATEST_PROCESSED_BLOCK,
    SYNC_STATE,
)
from evm_indexer.reorg import ReorgDetector, Verdict
from evm_indexer.retry import RetryPolicy
from evm_indexer.rpc_client import EVMChainClient
from evm_indexer.store.base import BaseStore
from evm_indexer.utils import hex_to_str


class SyncState(Enum):
    BOOTSTRAPPING = "bootstrapping"
    CATCHING_UP = "catching_up"
    POLLING = "polling"
    ERROR = "error"


class SyncEngine:
    """
    Drives ingestion of one chain into the canonical store.

    Heights are committed strictly in increasing order, one store transaction
    per height. While catching up, raw block and receipt data for the current
    batch is prefetched concurrently, but validation and commit still happen
    height by height. Any failure halts the engine in the ERROR state; it is
    never restarted from inside the process.
    """

    def __init__(
        self,
        client: EVMChainClient,
        store: BaseStore,
        config: SyncConfig,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.config = config
        self.chain_name = config.chain_name
        self._shutdown = asyncio.Event()
        # Backoff waits end as soon as stop() is called
        self.retry = replace(retry_policy or config.retry_policy(), interrupt=self._shutdown)
        self.assembler = BlockAssembler(config.chain_name)
        self.detector = ReorgDetector(store, self.fetch_header, config.max_reorg_depth, config.chain_name)

        self.state = SyncState.BOOTSTRAPPING
        self.error: Optional[Exception] = None
        self.next_height: Optional[int] = None
        self.tip: Optional[int] = None

        self._prefetch_slots = asyncio.Semaphore(config.prefetch_concurrency)
        self._set_state(SyncState.BOOTSTRAPPING)

    # Lifecycle

    async def run(self) -> None:
        """Run until stop() is called or an unrecoverable error occurs"""
        try:
            await self.bootstrap()
            while not self._shutdown.is_set():
                await self.step()
            logger.info(f"Sync engine for {self.chain_name} stopped at block {self.next_height}")
        except asyncio.CancelledError:
            logger.info(f"Sync engine for {self.chain_name} cancelled")
            raise
        except RetryAbortedError:
            logger.info(f"Sync engine for {self.chain_name} stopped at block {self.next_height} during retry backoff")
        except Exception as e:
            self.error = e
            self._set_state(SyncState.ERROR)
            logger.exception(f"Sync engine halted at block {self.next_height}: {type(e).__name__}: {e}")

    def stop(self) -> None:
        logger.info("Shutdown requested for sync engine")
        self._shutdown.set()

    @property
    def stopping(self) -> bool:
        return self._shutdown.is_set()

    async def bootstrap(self) -> None:
        self._set_state(SyncState.BOOTSTRAPPING)
        cursor = await asyncio.to_thread(self.store.read_cursor)
        if cursor is None:
            self.next_height = self.config.start_block
            logger.info(f"No sync cursor found, starting from configured block {self.next_height}")
        else:
            self.next_height = cursor + 1
            logger.info(f"Last processed block: {cursor}")
            await self._verify_last_committed()

        tip = await self.fetch_tip()
        logger.info(f"Starting indexer from block {self.next_height} (chain tip: {tip})")
        self._choose_state(tip)

    async def step(self) -> None:
        """One iteration of the current state"""
        if self.state is SyncState.CATCHING_UP:
            await self._catch_up()
        elif self.state is SyncState.POLLING:
            await self._poll()
        else:
            raise SyncError(f"Sync engine cannot step in state {self.state.value}")

    # States

    async def _catch_up(self) -> None:
        end = min(self.next_height + self.config.batch_size - 1, self.tip)
        batch_start = time.time()
        await self._process_range(self.next_height, end, prefetch=True)
        logger.info(f"Processed batch up to block {self.next_height - 1} in {time.time() - batch_start:.2f} seconds")

        tip = await self.fetch_tip()
        self._choose_state(tip)

    async def _poll(self) -> None:
        tip = await self.fetch_tip()
        if tip < self.next_height:
            logger.debug(f"Caught up with chain tip {tip}, sleeping {self.config.poll_interval}s")
            await self._sleep(self.config.poll_interval)
            return

        end = min(tip, self.next_height + self.config.batch_size - 1)
        await self._process_range(self.next_height, end, prefetch=False)
        self._choose_state(tip)

    def _choose_state(self, tip: int) -> None:
        remaining = tip - self.next_height + 1
        CHAIN_TIP_LAG.labels(chain=self.chain_name).set(max(remaining, 0))
        if remaining > self.config.batch_size:
            self._set_state(SyncState.CATCHING_UP)
        else:
            self._set_state(SyncState.POLLING)

    def _set_state(self, state: SyncState) -> None:
        if state is not self.state:
            logger.info(f"Sync engine state: {self.state.value} -> {state.value}")
        self.state = state
        for s in SyncState:
            SYNC_STATE.labels(chain=self.chain_name, state=s.value).set(1 if s is state else 0)

    async def _sleep(self, seconds: float) -> None:
        """Cooperative sleep that returns early on shutdown"""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # Pipeline

    async def _process_range(self, start: int, end: int, prefetch: bool) -> None:
        logger.info(f"Processing blocks {start} to {end} (chain tip: {self.tip})")
        if not prefetch:
            for height in range(start, end + 1):
                if self._shutdown.is_set():
                    return
                block_data = await self._fetch_height(height)
                if not await self._ingest(block_data):
                    return
            return

        tasks = [asyncio.create_task(self._fetch_height(height)) for height in range(start, end + 1)]
        try:
            for task in tasks:
                if self._shutdown.is_set():
                    break
                block_data = await task
                if not await self._ingest(block_data):
                    break
        finally:
            # Prefetched data past a reorg, error or shutdown is discarded
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _ingest(self, block_data: BlockData) -> bool:
        """Validate and commit one height. Returns False when a reorg moved the cursor back."""
        start_time = time.time()
        if block_data.number != self.next_height:
            raise SyncError(f"Expected block {self.next_height}, got {block_data.number}")

        verdict = await self.detector.validate(block_data.header)
        if verdict is Verdict.REORGED:
            cursor = await asyncio.to_thread(self.store.read_cursor)
            self.next_height = cursor + 1 if cursor is not None else self.config.start_block
            logger.warning(f"Resuming from block {self.next_height} after reorg")
            return False
        if verdict is Verdict.ALREADY_COMMITTED:
            logger.debug(f"Block {block_data.number} already committed, skipping")
            self.next_height = block_data.number + 1
            return True

        await asyncio.to_thread(self.store.commit_height, block_data, block_data.number)
        self.next_height = block_data.number + 1

        BLOCKS_PROCESSED.labels(chain=self.chain_name).inc()
        LATEST_PROCESSED_BLOCK.labels(chain=self.chain_name).set(block_data.number)
        LATEST_BLOCK_PROCESSING_TIME.labels(chain=self.chain_name).set(time.time() - start_time)
        if self.tip is not None:
            CHAIN_TIP_LAG.labels(chain=self.chain_name).set(max(self.tip - block_data.number, 0))
        logger.info(
            f"Committed block {block_data.number} with {len(block_data.transactions)} transactions "
            f"and {len(block_data.logs)} logs"
        )
        return True

    async def _verify_last_committed(self) -> None:
        """Re-check the stored tip against the node after a restart"""
        last = await asyncio.to_thread(self.store.last_committed)
        if last is None or last.hash is None:
            return
        header = await self.fetch_header(last.number)
        verdict = await self.detector.validate(header)
        if verdict is Verdict.REORGED:
            cursor = await asyncio.to_thread(self.store.read_cursor)
            self.next_height = cursor + 1 if cursor is not None else self.config.start_block
            logger.warning(f"Stored chain diverged while stopped, resuming from block {self.next_height}")

    # Upstream calls, each wrapped by the retry policy

    async def fetch_tip(self) -> int:
        tip = await self.retry.call(self.client.get_block_number, description="get_block_number")
        self.tip = tip
        CHAIN_TIP_BLOCK.labels(chain=self.chain_name).set(tip)
        return tip

    async def fetch_header(self, height: int) -> BlockHeader:
        raw_block = await self.retry.call(
            self.client.get_block, height, full_transactions=False, description=f"get_block({height})"
        )
        return parse_header(raw_block)

    async def _fetch_height(self, height: int) -> BlockData:
        async with self._prefetch_slots:
            raw_block = await self.retry.call(
                self.client.get_block, height, full_transactions=True, description=f"get_block({height})"
            )
            tx_hashes = [
                hex_to_str(tx['hash'])
                for tx in raw_block.get('transactions', [])
                if not isinstance(tx, (bytes, str))
            ]
            receipts = await asyncio.gather(*[
                self.retry.call(
                    self.client.get_transaction_receipt, tx_hash,
                    description=f"get_transaction_receipt({tx_hash})",
                )
                for tx_hash in tx_hashes
            ])
        return self.assembler.assemble(raw_block, dict(zip(tx_hashes, receipts)))
