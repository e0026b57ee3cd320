from .models import LogsFilter
from .server import AiohttpServer, get_aiohttp_app

__all__ = ["AiohttpServer", "LogsFilter", "get_aiohttp_app"]
