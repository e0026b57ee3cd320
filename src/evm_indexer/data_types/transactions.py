from typing import Optional

from pydantic import BaseModel


class Transaction(BaseModel):
    model_config = {
        "arbitrary_types_allowed": False,
        "frozen": True,
    }

    tx_hash: str
    block_number: int
    block_hash: str
    transaction_index: int
    from_address: str
    to_address: Optional[str] = None
    # uint256 quantities are kept as decimal strings
    value: str
    gas: int
    gas_price: Optional[str] = None
    max_fee_per_gas: Optional[str] = None
    max_priority_fee_per_gas: Optional[str] = None
    nonce: int
    type: Optional[int] = None
    input_data: str

    # Fields from receipt
    status: Optional[int] = None
    gas_used: Optional[int] = None
    cumulative_gas_used: Optional[int] = None
    effective_gas_price: Optional[str] = None
    contract_address: Optional[str] = None
