import asyncio
from types import SimpleNamespace

import aiohttp
import pytest
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3RPCError

from evm_indexer.exceptions import (
    BlockNotFoundError,
    MalformedResponseError,
    StoreError,
    TransientUpstreamError,
)
from evm_indexer.rpc_client import EVMChainClient, classify_error


def http_error(status):
    return aiohttp.ClientResponseError(None, (), status=status, message="upstream said no")


@pytest.mark.parametrize("error", [
    http_error(429),
    http_error(502),
    asyncio.TimeoutError(),
    aiohttp.ClientConnectionError("connection reset by peer"),
    ConnectionRefusedError(),
    Web3RPCError("rate limit exceeded, try again later"),
    Web3RPCError("header not found"),
])
def test_transient_errors(error):
    assert isinstance(classify_error(error), TransientUpstreamError)


@pytest.mark.parametrize("error", [
    http_error(400),
    http_error(404),
    Web3RPCError("invalid argument 0: hex string without 0x prefix"),
    ValueError("bad block identifier"),
    TypeError("unexpected response"),
    RuntimeError("something else"),
])
def test_permanent_errors(error):
    assert isinstance(classify_error(error), MalformedResponseError)


def test_indexer_errors_pass_through():
    error = StoreError("already classified")
    assert classify_error(error) is error


def failing(error):
    async def call(*args, **kwargs):
        raise error
    return call


def returning(value):
    async def call(*args, **kwargs):
        return value
    return call


@pytest.fixture
def client():
    return EVMChainClient(["http://node-a:8545", "http://node-b:8545"], "testchain", request_timeout=5)


def test_requires_an_rpc_url():
    with pytest.raises(ValueError):
        EVMChainClient([], "testchain")


def test_returns_block_number(client):
    client.w3 = SimpleNamespace(eth=SimpleNamespace(get_block_number=returning(123)))
    assert asyncio.run(client.get_block_number()) == 123


def test_transient_failure_rotates_to_next_rpc(client):
    client.w3 = SimpleNamespace(eth=SimpleNamespace(
        get_block_number=failing(aiohttp.ClientConnectionError("connection refused")),
    ))

    with pytest.raises(TransientUpstreamError):
        asyncio.run(client.get_block_number())

    assert client.current_rpc_index == 1


def test_permanent_failure_keeps_current_rpc(client):
    client.w3 = SimpleNamespace(eth=SimpleNamespace(get_block=failing(ValueError("invalid params"))))

    with pytest.raises(MalformedResponseError):
        asyncio.run(client.get_block(10))

    assert client.current_rpc_index == 0


def test_missing_block_is_reported(client):
    client.w3 = SimpleNamespace(eth=SimpleNamespace(get_block=failing(BlockNotFound("Block with id: '0xa' not found."))))

    with pytest.raises(BlockNotFoundError) as exc_info:
        asyncio.run(client.get_block(10))

    assert exc_info.value.height == 10


def test_missing_receipt_returns_none(client):
    client.w3 = SimpleNamespace(eth=SimpleNamespace(
        get_transaction_receipt=failing(TransactionNotFound("Transaction with hash: '0x01' not found.")),
    ))

    assert asyncio.run(client.get_transaction_receipt("0x" + "01" * 32)) is None
