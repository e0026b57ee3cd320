class IndexerError(Exception):
    """Base class for every error raised by the indexer"""


class UpstreamError(IndexerError):
    """Failure talking to the upstream RPC node"""


class TransientUpstreamError(UpstreamError):
    """Network, timeout or rate-limit failure. Safe to retry."""


class BlockNotFoundError(UpstreamError):
    """The node has no block at a height we expected it to have"""

    def __init__(self, height: int):
        super().__init__(f"Block {height} not found")
        self.height = height


class MalformedResponseError(UpstreamError):
    """The node rejected the request or returned something unusable"""


class RetryExhaustedError(UpstreamError):
    """A transient failure persisted through every retry attempt"""

    def __init__(self, description: str, attempts: int, last_error: Exception):
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class RetryAbortedError(UpstreamError):
    """Shutdown was requested while a retry was waiting to run"""

    def __init__(self, description: str, attempt: int, last_error: Exception):
        super().__init__(f"{description} abandoned after attempt {attempt} on shutdown: {last_error}")
        self.description = description
        self.attempt = attempt
        self.last_error = last_error


class AssemblyError(IndexerError):
    """Block body and receipts are inconsistent with each other"""


class ReorgDepthExceededError(IndexerError):
    """A reorganisation is deeper than the configured safety margin"""

    def __init__(self, height: int, max_depth: int):
        super().__init__(
            f"Reorg at height {height} exceeds maximum unwind depth of {max_depth} blocks. "
            "Manual intervention required."
        )
        self.height = height
        self.max_depth = max_depth


class StoreError(IndexerError):
    """Write or read against the canonical store failed"""


class SyncError(IndexerError):
    """The sync engine found its own invariants violated"""
