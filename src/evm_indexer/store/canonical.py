from typing import Optional

from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from evm_indexer.data_types import Block, BlockData, BlockRef, Log, Transaction
from evm_indexer.exceptions import StoreError
from evm_indexer.store.base import BaseStore
from evm_indexer.store.database import create_session_factory
from evm_indexer.store.schema import BlockRow, IndexerStatus, LogRow, TransactionRow


def _block_row(block: Block) -> BlockRow:
    return BlockRow(
        block_number=block.number,
        block_hash=block.hash,
        parent_hash=block.parent_hash,
        timestamp=block.timestamp,
        gas_used=block.gas_used,
        gas_limit=block.gas_limit,
        base_fee_per_gas=str(block.base_fee_per_gas) if block.base_fee_per_gas is not None else None,
        transaction_count=block.transaction_count,
    )


def _transaction_row(tx: Transaction) -> TransactionRow:
    return TransactionRow(**tx.model_dump())


def _log_row(log: Log) -> LogRow:
    return LogRow(**log.model_dump())


class CanonicalStore(BaseStore):
    """
    SQLAlchemy implementation of the canonical store.

    Each write runs inside its own Session.begin() block, so the whole height
    commits or nothing does. Calls are blocking and are meant to be run on a
    worker thread from async code.
    """

    def __init__(self, engine: Engine, chain_name: str):
        self.engine = engine
        self.chain_name = chain_name
        self.Session = create_session_factory(engine)

    def read_cursor(self) -> Optional[int]:
        try:
            with self.Session() as session:
                status = session.get(IndexerStatus, self.chain_name)
                return status.last_processed_block if status is not None else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read sync cursor: {e}") from e

    def block_hash_at(self, height: int) -> Optional[str]:
        try:
            with self.Session() as session:
                return session.query(BlockRow.block_hash).filter(BlockRow.block_number == height).scalar()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read block {height}: {e}") from e

    def last_committed(self) -> Optional[BlockRef]:
        cursor = self.read_cursor()
        if cursor is None:
            return None
        return BlockRef(number=cursor, hash=self.block_hash_at(cursor))

    def commit_height(self, block_data: BlockData, new_cursor: int) -> None:
        block = block_data.block
        try:
            with self.Session.begin() as session:
                existing = session.get(BlockRow, block.number)
                if existing is not None:
                    if existing.block_hash != block.hash:
                        raise StoreError(
                            f"Block {block.number} already stored with hash {existing.block_hash}, "
                            f"refusing to overwrite with {block.hash}"
                        )
                    logger.debug(f"Block {block.number} already committed, leaving rows untouched")
                    # A replayed height never moves the cursor backwards
                    status = session.get(IndexerStatus, self.chain_name)
                    if status is None or status.last_processed_block is None \
                            or status.last_processed_block < new_cursor:
                        self._write_cursor(session, new_cursor)
                else:
                    self._write_rows(session, block_data)
                    # Cursor is always the last statement of the transaction
                    self._write_cursor(session, new_cursor)
        except SQLAlchemyError as e:
            logger.error(f"Failed to commit block {block.number}: {e}")
            raise StoreError(f"Failed to commit block {block.number}: {e}") from e

    def rollback_height(self, height: int) -> None:
        try:
            with self.Session.begin() as session:
                status = session.get(IndexerStatus, self.chain_name)
                cursor = status.last_processed_block if status is not None else None
                if cursor is not None and cursor > height:
                    raise StoreError(f"Cannot roll back block {height} while cursor is at {cursor}")
                if cursor is None or cursor < height:
                    # Nothing committed at this height, and the cursor must not skip ahead
                    logger.debug(f"Block {height} is above cursor {cursor}, nothing to roll back")
                    return
                session.query(LogRow).filter(LogRow.block_number == height).delete(synchronize_session=False)
                session.query(TransactionRow).filter(TransactionRow.block_number == height).delete(synchronize_session=False)
                deleted = session.query(BlockRow).filter(BlockRow.block_number == height).delete(synchronize_session=False)
                self._write_cursor(session, height - 1)
        except SQLAlchemyError as e:
            logger.error(f"Failed to roll back block {height}: {e}")
            raise StoreError(f"Failed to roll back block {height}: {e}") from e

        if deleted:
            logger.warning(f"Rolled back block {height}")
        else:
            logger.debug(f"Block {height} was not stored, cursor moved to {height - 1}")

    def _write_rows(self, session: Session, block_data: BlockData) -> None:
        session.add(_block_row(block_data.block))
        session.flush()
        session.add_all([_transaction_row(tx) for tx in block_data.transactions])
        session.flush()
        session.add_all([_log_row(log) for log in block_data.logs])
        session.flush()

    def _write_cursor(self, session: Session, block_number: int) -> None:
        status = session.get(IndexerStatus, self.chain_name)
        if status is None:
            session.add(IndexerStatus(indexer_name=self.chain_name, last_processed_block=block_number))
        else:
            status.last_processed_block = block_number
