import asyncio

import pytest

from conftest import CHAIN_NAME, FakeChain, seed
from evm_indexer.assembler import parse_header
from evm_indexer.data_types import BlockHeader
from evm_indexer.exceptions import ReorgDepthExceededError, SyncError
from evm_indexer.reorg import ReorgDetector, Verdict


@pytest.fixture
def chain(store):
    chain = FakeChain(tip=50)
    seed(store, chain, 40, 50)
    return chain


def make_detector(store, chain, max_depth=64):
    async def fetch_header(height):
        return parse_header(await chain.get_block(height, full_transactions=False))

    return ReorgDetector(store, fetch_header, max_depth, CHAIN_NAME)


def header(chain, number):
    return parse_header(chain.blocks[number])


def test_accepts_anything_on_an_empty_store(store):
    detector = make_detector(store, FakeChain(tip=3))
    candidate = BlockHeader(number=3, hash="0x" + "11" * 32, parent_hash="0x" + "22" * 32)

    assert asyncio.run(detector.validate(candidate)) is Verdict.ACCEPT


def test_accepts_linked_child(store, chain):
    chain.extend(51, "a")
    detector = make_detector(store, chain)

    assert asyncio.run(detector.validate(header(chain, 51))) is Verdict.ACCEPT
    assert store.read_cursor() == 50


def test_recognises_already_committed_height(store, chain):
    detector = make_detector(store, chain)

    assert asyncio.run(detector.validate(header(chain, 45))) is Verdict.ALREADY_COMMITTED
    assert store.read_cursor() == 50


def test_gap_above_cursor_is_an_engine_error(store, chain):
    chain.extend(53, "a")
    detector = make_detector(store, chain)

    with pytest.raises(SyncError):
        asyncio.run(detector.validate(header(chain, 53)))


def test_parent_mismatch_walks_back_to_common_ancestor(store, chain):
    original = {n: chain.hash_at(n) for n in range(40, 51)}
    chain.fork(47, "b", tip=51)
    detector = make_detector(store, chain)

    verdict = asyncio.run(detector.validate(header(chain, 51)))

    assert verdict is Verdict.REORGED
    assert store.read_cursor() == 46
    assert store.block_hash_at(46) == original[46]
    for number in range(47, 51):
        assert store.block_hash_at(number) is None
    # The new chain links onto what is left in the store
    assert chain.blocks[47]['parentHash'] == chain.blocks[46]['hash']
    assert chain.hash_at(46) == original[46]


def test_replaced_height_below_cursor_unwinds_from_the_tip(store, chain):
    chain.fork(47, "b")
    detector = make_detector(store, chain)

    verdict = asyncio.run(detector.validate(header(chain, 49)))

    assert verdict is Verdict.REORGED
    assert store.read_cursor() == 46
    assert store.block_hash_at(47) is None


def test_reorg_deeper_than_limit_halts(store, chain):
    chain.fork(44, "b", tip=51)
    detector = make_detector(store, chain, max_depth=3)

    with pytest.raises(ReorgDepthExceededError) as exc_info:
        asyncio.run(detector.validate(header(chain, 51)))

    assert exc_info.value.max_depth == 3
    # Only up to max_depth heights were unwound before giving up
    assert store.read_cursor() == 47


def test_reorg_of_exactly_max_depth_converges(store, chain):
    chain.fork(48, "b", tip=51)
    detector = make_detector(store, chain, max_depth=3)

    assert asyncio.run(detector.validate(header(chain, 51))) is Verdict.REORGED
    assert store.read_cursor() == 47


def test_walk_back_stops_below_first_stored_block(store, chain):
    chain.fork(38, "b", tip=51)
    detector = make_detector(store, chain)

    assert asyncio.run(detector.validate(header(chain, 51))) is Verdict.REORGED
    # Heights 40..50 were all unwound and nothing below 40 was ever stored
    assert store.read_cursor() == 39
    assert store.last_committed().hash is None
