from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .schema import BlockRow, IndexerStatus, LogRow, TransactionRow


def row_to_dict(row) -> dict:
    return {column.name: getattr(row, column.key) for column in row.__table__.columns}


class BlockRepository:
    @staticmethod
    def get_block_by_number(session: Session, block_number: int) -> Optional[BlockRow]:
        return session.query(BlockRow).filter(BlockRow.block_number == block_number).first()

    @staticmethod
    def get_block_by_hash(session: Session, block_hash: str) -> Optional[BlockRow]:
        return session.query(BlockRow).filter(BlockRow.block_hash == block_hash.lower()).first()

    @staticmethod
    def get_latest_block(session: Session) -> Optional[BlockRow]:
        """
        Get the latest block from the database.
        """
        return session.query(BlockRow).order_by(BlockRow.block_number.desc()).first()


class TransactionRepository:
    @staticmethod
    def get_transaction_by_hash(session: Session, tx_hash: str) -> Optional[TransactionRow]:
        return session.query(TransactionRow).filter(TransactionRow.tx_hash == tx_hash.lower()).first()

    @staticmethod
    def get_transactions_by_block(session: Session, block_number: int) -> list[TransactionRow]:
        return (
            session.query(TransactionRow)
            .filter(TransactionRow.block_number == block_number)
            .order_by(TransactionRow.transaction_index)
            .all()
        )


class LogRepository:
    @staticmethod
    def get_logs(
        session: Session,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        block_hash: Optional[str] = None,
        address: Optional[str] = None,
        topics: tuple[Optional[str], ...] = (),
        skip: int = 0,
        limit: int = 100,
    ) -> list[LogRow]:
        query = session.query(LogRow)
        # A block hash pins the query to a single block, so the range is ignored
        if block_hash is not None:
            query = query.filter(LogRow.block_hash == block_hash.lower())
        else:
            if from_block is not None:
                query = query.filter(LogRow.block_number >= from_block)
            if to_block is not None:
                query = query.filter(LogRow.block_number <= to_block)
        if address is not None:
            query = query.filter(LogRow.contract_address == address.lower())

        topic_columns = (LogRow.topic0, LogRow.topic1, LogRow.topic2, LogRow.topic3)
        for column, topic in zip(topic_columns, topics):
            if topic is not None:
                query = query.filter(column == topic.lower())

        return (
            query.order_by(LogRow.block_number, LogRow.transaction_index, LogRow.log_index_in_tx)
            .offset(skip)
            .limit(limit)
            .all()
        )


class StatusRepository:
    @staticmethod
    def get_status(session: Session, indexer_name: str) -> dict:
        status = session.get(IndexerStatus, indexer_name)
        return {
            'indexer_name': indexer_name,
            'last_processed_block': status.last_processed_block if status is not None else None,
            'block_count': session.query(func.count(BlockRow.block_number)).scalar(),
        }
