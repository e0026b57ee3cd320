import asyncio
import json
from typing import Optional

from aiohttp import web
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from evm_indexer.api.models import ErrorResponse, LogsFilter
from evm_indexer.store.canonical import CanonicalStore
from evm_indexer.store.repository import (
    BlockRepository,
    LogRepository,
    StatusRepository,
    TransactionRepository,
    row_to_dict,
)
from evm_indexer.sync_engine import SyncEngine

STORE_KEY = web.AppKey("store", CanonicalStore)
ENGINE_KEY = web.AppKey("engine", SyncEngine)


def json_error(status: int, message: str) -> web.Response:
    body = ErrorResponse(
        status="fail" if 400 <= status < 500 else "error",
        status_code=status,
        message=message,
    )
    return web.json_response(body.model_dump(), status=status)


async def _query(request: web.Request, func, *args):
    """Run a repository query in a read session on a worker thread"""
    store = request.app[STORE_KEY]

    def run():
        with store.Session() as session:
            result = func(session, *args)
            if isinstance(result, list):
                return [row_to_dict(row) for row in result]
            if result is not None and hasattr(result, '__table__'):
                return row_to_dict(result)
            return result

    return await asyncio.to_thread(run)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except SQLAlchemyError as e:
        logger.error(f"Database error serving {request.path}: {e}")
        return json_error(500, "A database error occurred")


async def root(request: web.Request) -> web.Response:
    return web.Response(text="EVM Indexer API")


async def get_status(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    status = await _query(request, StatusRepository.get_status, store.chain_name)
    engine: Optional[SyncEngine] = request.app.get(ENGINE_KEY)
    if engine is not None:
        status['state'] = engine.state.value
        status['chain_tip'] = engine.tip
        status['error'] = str(engine.error) if engine.error is not None else None
    return web.json_response(status)


async def get_block(request: web.Request) -> web.Response:
    identifier = request.match_info['identifier']
    if identifier.startswith('0x'):
        block = await _query(request, BlockRepository.get_block_by_hash, identifier)
    else:
        try:
            block_number = int(identifier)
        except ValueError:
            return json_error(400, "Invalid block number format")
        block = await _query(request, BlockRepository.get_block_by_number, block_number)

    if block is None:
        return json_error(404, f"Block {identifier} not found")
    return web.json_response(block)


async def get_transaction(request: web.Request) -> web.Response:
    tx_hash = request.match_info['tx_hash']
    if not tx_hash.startswith('0x') or len(tx_hash) != 66:
        return json_error(400, "Invalid transaction hash format.")

    transaction = await _query(request, TransactionRepository.get_transaction_by_hash, tx_hash)
    if transaction is None:
        return json_error(404, f"Transaction {tx_hash} not found")
    return web.json_response(transaction)


async def get_logs(request: web.Request) -> web.Response:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return json_error(400, "Request body must be valid JSON")
    if not isinstance(body, dict):
        return json_error(400, "Request body must be a JSON object")

    try:
        filters = LogsFilter.model_validate(body)
    except ValidationError as e:
        return json_error(400, f"Invalid filters: {e.errors(include_url=False)}")

    logs = await _query(
        request,
        LogRepository.get_logs,
        filters.from_block,
        filters.to_block,
        filters.block_hash,
        filters.address,
        filters.topics,
        filters.offset,
        filters.page_size,
    )
    return web.json_response(logs)


def get_aiohttp_app(store: CanonicalStore, engine: Optional[SyncEngine] = None) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[STORE_KEY] = store
    if engine is not None:
        app[ENGINE_KEY] = engine
    app.router.add_get('/', root)
    app.router.add_get('/status', get_status)
    app.router.add_get('/block/{identifier}', get_block)
    app.router.add_get('/transaction/{tx_hash}', get_transaction)
    app.router.add_post('/logs', get_logs)
    return app


class AiohttpServer:

    def __init__(self, app: web.Application, host: str = '0.0.0.0', port: int = 3000) -> None:
        self._runner: web.AppRunner | None = None
        self._app = app
        self._host = host
        self._port = port

    async def start(self) -> None:
        logger.info(f"Starting read API on http://{self._host}:{self._port}")
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port, reuse_address=True)
        await site.start()

    async def stop(self) -> None:
        if self._runner is None:
            return
        logger.info("Stopping read API")
        await self._runner.cleanup()
        self._runner = None
