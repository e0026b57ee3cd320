from dataclasses import dataclass, field
from typing import List

from dynaconf import Dynaconf

from evm_indexer.retry import RetryPolicy


@dataclass(frozen=True)
class SyncConfig:
    """Everything the sync engine needs to know, independent of where it came from"""

    chain_name: str
    rpc_urls: List[str] = field(default_factory=list)
    start_block: int = 0
    batch_size: int = 10
    poll_interval: float = 10.0
    max_reorg_depth: int = 64
    prefetch_concurrency: int = 4
    retry_attempts: int = 5
    retry_base_delay: float = 2.0
    retry_max_delay: float = 60.0
    retry_jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Dynaconf) -> "SyncConfig":
        return cls(
            chain_name=settings.chain.name,
            rpc_urls=list(settings.chain.rpc_urls),
            start_block=settings.sync.start_block,
            batch_size=settings.sync.batch_size,
            poll_interval=float(settings.sync.poll_interval),
            max_reorg_depth=settings.sync.max_reorg_depth,
            prefetch_concurrency=settings.sync.prefetch_concurrency,
            retry_attempts=settings.retry.attempts,
            retry_base_delay=float(settings.retry.base_delay),
            retry_max_delay=float(settings.retry.max_delay),
            retry_jitter=settings.retry.jitter,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            jitter=self.retry_jitter,
        )
