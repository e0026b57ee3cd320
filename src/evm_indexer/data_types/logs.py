from typing import List, Optional

from pydantic import BaseModel


class Log(BaseModel):
    model_config = {
        "arbitrary_types_allowed": False,
        "frozen": True,
    }

    block_number: int
    block_hash: str
    transaction_hash: str
    transaction_index: int
    log_index: Optional[int] = None
    log_index_in_tx: int
    contract_address: str
    topic0: Optional[str] = None
    topic1: Optional[str] = None
    topic2: Optional[str] = None
    topic3: Optional[str] = None
    topics: List[str] = []
    data: str
