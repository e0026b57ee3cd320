import asyncio
from enum import Enum
from typing import Awaitable, Callable

from loguru import logger

from evm_indexer.data_types import BlockHeader
from evm_indexer.exceptions import ReorgDepthExceededError, SyncError
from evm_indexer.metrics import BLOCKS_ROLLED_BACK, REORGS_DETECTED
from evm_indexer.store.base import BaseStore


class Verdict(Enum):
    ACCEPT = "accept"
    ALREADY_COMMITTED = "already_committed"
    REORGED = "reorged"


class ReorgDetector:
    """
    Guards the canonical-chain invariant: block[H+1].parent_hash == block[H].hash.

    A candidate that does not link onto the last committed block triggers a
    walk back: the last committed height is rolled back, the replacement block
    at that height is fetched, and its parent is compared with the new last
    committed block. This repeats until the chains agree (the common ancestor)
    or max_depth heights have been unwound.

    When validate() returns REORGED the candidate has been discarded and the
    caller must resume from the store's cursor.
    """

    def __init__(
        self,
        store: BaseStore,
        fetch_header: Callable[[int], Awaitable[BlockHeader]],
        max_depth: int,
        chain_name: str,
    ) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.store = store
        self.fetch_header = fetch_header
        self.max_depth = max_depth
        self.chain_name = chain_name

    async def validate(self, candidate: BlockHeader) -> Verdict:
        last = await asyncio.to_thread(self.store.last_committed)
        if last is None:
            return Verdict.ACCEPT

        if candidate.number > last.number + 1:
            raise SyncError(
                f"Block {candidate.number} does not follow last committed block {last.number}"
            )

        if candidate.number == last.number + 1:
            # Nothing stored at the cursor height means there is nothing to link to
            if last.hash is None or candidate.parent_hash == last.hash:
                return Verdict.ACCEPT
            logger.warning(
                f"Reorg detected at block {candidate.number}: parent {candidate.parent_hash} "
                f"does not match stored block {last.number} ({last.hash})"
            )
            REORGS_DETECTED.labels(chain=self.chain_name).inc()
            await self._walk_back(candidate, unwound=0)
            return Verdict.REORGED

        # Replaying a height at or below the cursor
        stored_hash = await asyncio.to_thread(self.store.block_hash_at, candidate.number)
        if stored_hash == candidate.hash:
            return Verdict.ALREADY_COMMITTED
        if stored_hash is None:
            raise SyncError(f"Block {candidate.number} is at or below cursor {last.number} but is not stored")

        depth = last.number - candidate.number + 1
        logger.warning(
            f"Reorg detected at block {candidate.number}: stored hash {stored_hash} "
            f"replaced by {candidate.hash}, unwinding {depth} blocks"
        )
        REORGS_DETECTED.labels(chain=self.chain_name).inc()
        if depth > self.max_depth:
            raise ReorgDepthExceededError(candidate.number, self.max_depth)
        for height in range(last.number, candidate.number - 1, -1):
            await self._rollback(height)
        await self._walk_back(candidate, unwound=depth)
        return Verdict.REORGED

    async def _walk_back(self, candidate: BlockHeader, unwound: int) -> None:
        while True:
            last = await asyncio.to_thread(self.store.last_committed)
            if last is None or last.hash is None or candidate.parent_hash == last.hash:
                ancestor = last.number if last is not None else None
                logger.info(f"Common ancestor found at block {ancestor} after unwinding {unwound} blocks")
                return

            if unwound >= self.max_depth:
                raise ReorgDepthExceededError(candidate.number, self.max_depth)

            await self._rollback(last.number)
            unwound += 1
            candidate = await self.fetch_header(last.number)

    async def _rollback(self, height: int) -> None:
        await asyncio.to_thread(self.store.rollback_height, height)
        BLOCKS_ROLLED_BACK.labels(chain=self.chain_name).inc()
