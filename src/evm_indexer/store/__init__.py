from .base import BaseStore
from .canonical import CanonicalStore
from .database import create_db_engine, create_session_factory, init_db

__all__ = [
    "BaseStore",
    "CanonicalStore",
    "create_db_engine",
    "create_session_factory",
    "init_db",
]
