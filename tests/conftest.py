import hashlib
from collections import Counter, defaultdict

import pytest
from hexbytes import HexBytes

from evm_indexer.assembler import BlockAssembler
from evm_indexer.config import SyncConfig
from evm_indexer.exceptions import BlockNotFoundError
from evm_indexer.retry import RetryPolicy
from evm_indexer.store import CanonicalStore, create_db_engine, init_db
from evm_indexer.sync_engine import SyncEngine
from evm_indexer.utils import hex_to_str

CHAIN_NAME = "testchain"
TRANSFER_TOPIC = HexBytes(hashlib.sha256(b"Transfer(address,address,uint256)").digest())
SENDER = "0x" + "Ab" * 20
TOKEN = "0x" + "Cd" * 20


def fake_hash(*parts) -> HexBytes:
    return HexBytes(hashlib.sha256(":".join(str(p) for p in parts).encode()).digest())


class FakeChain:
    """
    Scripted stand-in for EVMChainClient.

    Blocks are generated per fork label, so two labels give two chains that
    agree below the fork height and diverge from it. Scripted failures are
    raised, in order, by the next calls of the named method.
    """

    def __init__(self, tip: int, label: str = "a", txs_per_block: int = 2, logs_per_tx: int = 1):
        self.txs_per_block = txs_per_block
        self.logs_per_tx = logs_per_tx
        self.blocks = {}
        self.receipts = {}
        self.tip = tip
        self.failures = defaultdict(list)
        self.calls = Counter()
        self.build(0, tip, label)

    def build(self, start: int, end: int, label: str) -> None:
        for number in range(start, end + 1):
            parent = self.blocks[number - 1]['hash'] if number - 1 in self.blocks else fake_hash(label, number - 1)
            block_hash = fake_hash(label, number)
            transactions = []
            for index in range(self.txs_per_block):
                tx_hash = fake_hash(label, number, "tx", index)
                transactions.append({
                    'hash': tx_hash,
                    'blockNumber': number,
                    'blockHash': block_hash,
                    'transactionIndex': index,
                    'from': SENDER,
                    'to': TOKEN,
                    'value': 10 ** 18,
                    'gas': 60000,
                    'gasPrice': 2 * 10 ** 9,
                    'maxFeePerGas': 3 * 10 ** 9,
                    'maxPriorityFeePerGas': 10 ** 9,
                    'nonce': number * self.txs_per_block + index,
                    'type': 2,
                    'input': HexBytes(b"\xa9\x05\x9c\xbb"),
                })
                self.receipts[hex_to_str(tx_hash)] = {
                    'transactionHash': tx_hash,
                    'blockHash': block_hash,
                    'blockNumber': number,
                    'status': 1,
                    'gasUsed': 50000,
                    'cumulativeGasUsed': 50000 * (index + 1),
                    'effectiveGasPrice': 2 * 10 ** 9,
                    'contractAddress': None,
                    'logs': [
                        {
                            'blockNumber': number,
                            'blockHash': block_hash,
                            'transactionHash': tx_hash,
                            'transactionIndex': index,
                            'logIndex': index * self.logs_per_tx + log_index,
                            'address': TOKEN,
                            'topics': [TRANSFER_TOPIC, fake_hash("from", index)],
                            'data': HexBytes(log_index.to_bytes(32, 'big')),
                        }
                        for log_index in range(self.logs_per_tx)
                    ],
                }
            self.blocks[number] = {
                'number': number,
                'hash': block_hash,
                'parentHash': parent,
                'timestamp': 1_700_000_000 + number * 12,
                'gasUsed': 50000 * self.txs_per_block,
                'gasLimit': 30_000_000,
                'baseFeePerGas': 10 ** 9,
                'transactions': transactions,
            }

    def fork(self, at: int, label: str, tip: int | None = None) -> None:
        """Replace every block from `at` upwards with blocks of another chain"""
        self.tip = tip if tip is not None else self.tip
        for number in [n for n in self.blocks if n >= at]:
            del self.blocks[number]
        self.build(at, self.tip, label)

    def extend(self, tip: int, label: str) -> None:
        self.build(self.tip + 1, tip, label)
        self.tip = tip

    def hash_at(self, number: int) -> str:
        return hex_to_str(self.blocks[number]['hash'])

    def receipts_for(self, number: int) -> dict:
        return {
            hex_to_str(tx['hash']): self.receipts[hex_to_str(tx['hash'])]
            for tx in self.blocks[number]['transactions']
        }

    def block_data(self, number: int):
        return BlockAssembler(CHAIN_NAME).assemble(self.blocks[number], self.receipts_for(number))

    def _maybe_fail(self, method: str) -> None:
        self.calls[method] += 1
        if self.failures[method]:
            raise self.failures[method].pop(0)

    async def get_block_number(self) -> int:
        self._maybe_fail('get_block_number')
        return self.tip

    async def get_block(self, block_number: int, full_transactions: bool = True) -> dict:
        self._maybe_fail('get_block')
        if block_number > self.tip or block_number not in self.blocks:
            raise BlockNotFoundError(block_number)
        raw_block = dict(self.blocks[block_number])
        if not full_transactions:
            raw_block['transactions'] = [tx['hash'] for tx in raw_block['transactions']]
        return raw_block

    async def get_transaction_receipt(self, transaction_hash: str) -> dict | None:
        self._maybe_fail('get_transaction_receipt')
        return self.receipts.get(transaction_hash)


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'indexer.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    return CanonicalStore(db_engine, CHAIN_NAME)


@pytest.fixture
def retry_policy():
    return RetryPolicy(attempts=3, base_delay=0.5, max_delay=1.0, jitter=False, sleep=no_sleep)


@pytest.fixture
def make_engine(store, retry_policy):
    def factory(chain: FakeChain, policy: RetryPolicy | None = None, **overrides) -> SyncEngine:
        settings = dict(
            chain_name=CHAIN_NAME,
            rpc_urls=["http://localhost:8545"],
            start_block=0,
            batch_size=10,
            poll_interval=0.01,
            max_reorg_depth=64,
            prefetch_concurrency=4,
        )
        settings.update(overrides)
        return SyncEngine(chain, store, SyncConfig(**settings), retry_policy=policy or retry_policy)

    return factory


def seed(store, chain: FakeChain, start: int, end: int) -> None:
    """Commit heights start..end of the fake chain straight into the store"""
    for number in range(start, end + 1):
        store.commit_height(chain.block_data(number), number)
