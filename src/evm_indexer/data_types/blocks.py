from typing import Optional

from pydantic import BaseModel


class Block(BaseModel):
    model_config = {
        "arbitrary_types_allowed": False,
        "frozen": True,
    }

    number: int
    hash: str
    parent_hash: str
    timestamp: int
    gas_used: int
    gas_limit: int
    base_fee_per_gas: Optional[int] = None
    transaction_count: int = 0


class BlockHeader(BaseModel):
    """The subset of a block needed to check parent linkage"""
    model_config = {
        "frozen": True,
    }

    number: int
    hash: str
    parent_hash: str


class BlockRef(BaseModel):
    """Last committed position. hash is None when the cursor sits below the first stored block."""
    model_config = {
        "frozen": True,
    }

    number: int
    hash: Optional[str] = None
