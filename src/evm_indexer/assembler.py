import time
from typing import Mapping, Optional

from loguru import logger
from pydantic import ValidationError

from evm_indexer.data_types import Block, BlockData, BlockHeader, Log, Transaction
from evm_indexer.exceptions import AssemblyError
from evm_indexer.metrics import BLOCK_PROCESSING_TIME
from evm_indexer.parsers import BlockParser, LogParser, TransactionParser
from evm_indexer.utils import hex_to_str


def parse_header(raw_block: dict) -> BlockHeader:
    try:
        return BlockHeader(**BlockParser.parse_header(raw_block))
    except (KeyError, TypeError, ValidationError) as e:
        raise AssemblyError(f"Malformed block header: {e}") from e


class BlockAssembler:
    """Turns a fetched block and its receipts into Block, Transaction and Log records.

    Transaction order is the order of the block body and log order is the order
    of each receipt's logs. Either everything assembles or AssemblyError is
    raised and nothing is returned.
    """

    def __init__(self, chain_name: str) -> None:
        self.chain_name = chain_name

    def assemble(self, raw_block: dict, receipts: Mapping[str, Optional[dict]]) -> BlockData:
        start_time = time.time()
        number = raw_block.get('number')
        try:
            block = Block(**BlockParser.parse_raw(raw_block))

            transactions = []
            logs = []
            for raw_tx in raw_block.get('transactions', []):
                if isinstance(raw_tx, (bytes, str)):
                    raise AssemblyError(f"Block {number} was fetched without full transaction bodies")

                tx_hash = hex_to_str(raw_tx['hash'])
                receipt = receipts.get(tx_hash)
                if receipt is None:
                    raise AssemblyError(f"Missing receipt for transaction {tx_hash} in block {number}")

                receipt_block_hash = hex_to_str(receipt['blockHash'])
                if receipt_block_hash != block.hash:
                    raise AssemblyError(
                        f"Receipt for {tx_hash} belongs to block {receipt_block_hash}, "
                        f"expected {block.hash} at height {number}"
                    )

                transactions.append(Transaction(**TransactionParser.parse_raw(raw_tx, receipt)))

                # Parse logs from this transaction's receipt
                for log_index_in_tx, raw_log in enumerate(receipt.get('logs', [])):
                    logs.append(Log(**LogParser.parse_raw(raw_log, log_index_in_tx)))

        except AssemblyError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            # pydantic.ValidationError is a ValueError
            logger.error(f"Failed to parse block {number}: {e}")
            raise AssemblyError(f"Failed to parse block {number}: {e}") from e

        BLOCK_PROCESSING_TIME.labels(chain=self.chain_name).observe(time.time() - start_time)
        return BlockData(block=block, transactions=transactions, logs=logs)
