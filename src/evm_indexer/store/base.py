from abc import ABC, abstractmethod
from typing import Optional

from evm_indexer.data_types import BlockData, BlockRef


class BaseStore(ABC):
    """Abstract base class for the canonical store.

    commit_height and rollback_height are the only write paths. Both are
    atomic: either every row of the height changes or none does.
    """

    @abstractmethod
    def read_cursor(self) -> Optional[int]:
        """Highest height fully ingested, or None if nothing has been ingested yet"""

    @abstractmethod
    def last_committed(self) -> Optional[BlockRef]:
        """Cursor position together with the hash stored at that height"""

    @abstractmethod
    def block_hash_at(self, height: int) -> Optional[str]:
        pass

    @abstractmethod
    def commit_height(self, block_data: BlockData, new_cursor: int) -> None:
        """
        Persist a block, its transactions, its logs and the new cursor as one unit

        Args:
            block_data (BlockData): Fully assembled height
            new_cursor (int): Cursor value written as the last statement of the transaction
        """

    @abstractmethod
    def rollback_height(self, height: int) -> None:
        """Delete the block at height with its transactions and logs, moving the cursor to height - 1

        Heights above the cursor were never committed, so rolling one back changes nothing.
        """
