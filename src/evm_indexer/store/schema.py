from sqlalchemy import JSON, BigInteger, Column, ForeignKey, Index, Integer, SmallInteger, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# BigInteger autoincrement keys only work on SQLite as INTEGER PRIMARY KEY
LogId = BigInteger().with_variant(Integer, "sqlite")


class IndexerStatus(Base):
    """Sync cursor, one row per tracked chain"""
    __tablename__ = 'indexer_status'

    indexer_name = Column(String(64), primary_key=True)
    last_processed_block = Column(BigInteger, nullable=True)


class BlockRow(Base):
    __tablename__ = 'blocks'

    block_number = Column(BigInteger, primary_key=True, autoincrement=False)
    block_hash = Column(String(66), nullable=False, unique=True, index=True)
    parent_hash = Column(String(66), nullable=False)
    timestamp = Column(BigInteger, nullable=False)
    gas_used = Column(BigInteger, nullable=False)
    gas_limit = Column(BigInteger, nullable=False)
    base_fee_per_gas = Column(String(78))
    transaction_count = Column(Integer, nullable=False, default=0)
    transactions = relationship("TransactionRow", back_populates="block", passive_deletes=True)


class TransactionRow(Base):
    __tablename__ = 'transactions'

    tx_hash = Column(String(66), primary_key=True)
    block_number = Column(BigInteger, ForeignKey('blocks.block_number', ondelete='CASCADE'), nullable=False, index=True)
    block_hash = Column(String(66), nullable=False)
    transaction_index = Column(Integer, nullable=False)
    from_address = Column(String(42), nullable=False, index=True)
    to_address = Column(String(42), nullable=True, index=True)
    value = Column(String(78), nullable=False)
    gas = Column(BigInteger, nullable=False)
    gas_price = Column(String(78))
    max_fee_per_gas = Column(String(78))
    max_priority_fee_per_gas = Column(String(78))
    nonce = Column(BigInteger, nullable=False)
    type = Column(SmallInteger)
    input_data = Column(Text)
    status = Column(SmallInteger)
    gas_used = Column(BigInteger)
    cumulative_gas_used = Column(BigInteger)
    effective_gas_price = Column(String(78))
    contract_address = Column(String(42))
    block = relationship("BlockRow", back_populates="transactions")
    logs = relationship("LogRow", back_populates="transaction", passive_deletes=True)


class LogRow(Base):
    __tablename__ = 'logs'

    id = Column(LogId, primary_key=True, autoincrement=True)
    block_number = Column(BigInteger, ForeignKey('blocks.block_number', ondelete='CASCADE'), nullable=False, index=True)
    block_hash = Column(String(66), nullable=False)
    transaction_hash = Column(String(66), ForeignKey('transactions.tx_hash', ondelete='CASCADE'), nullable=False, index=True)
    transaction_index = Column(Integer, nullable=False)
    log_index = Column(Integer)
    log_index_in_tx = Column(Integer, nullable=False)
    contract_address = Column(String(42), nullable=False, index=True)
    topic0 = Column(String(66), index=True)
    topic1 = Column(String(66), index=True)
    topic2 = Column(String(66))
    topic3 = Column(String(66))
    topics = Column(JSON, nullable=False, default=list)
    data = Column(Text)
    transaction = relationship("TransactionRow", back_populates="logs")

    __table_args__ = (
        Index('idx_logs_block_order', 'block_number', 'transaction_index', 'log_index_in_tx'),
    )
