from dataclasses import dataclass, field
from typing import List

from .blocks import Block, BlockHeader, BlockRef
from .logs import Log
from .transactions import Transaction


@dataclass
class BlockData:
    """One height, fully assembled and ready to be committed"""
    block: Block
    transactions: List[Transaction] = field(default_factory=list)
    logs: List[Log] = field(default_factory=list)

    @property
    def number(self) -> int:
        return self.block.number

    @property
    def header(self) -> BlockHeader:
        return BlockHeader(
            number=self.block.number,
            hash=self.block.hash,
            parent_hash=self.block.parent_hash,
        )


__all__ = [
    "Block",
    "BlockData",
    "BlockHeader",
    "BlockRef",
    "Log",
    "Transaction",
]
