from .blocks import BlockParser
from .logs import LogParser
from .transactions import TransactionParser

__all__ = ["BlockParser", "LogParser", "TransactionParser"]
