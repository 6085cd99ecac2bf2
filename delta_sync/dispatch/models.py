"""
Settings and results for batch dispatch to the ingestion API.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class DispatchConfig:
    """
    Args:
        batch_size: Maximum profiles per request
        concurrency_limit: Batches sent concurrently per wave
        max_retries: Total attempts per batch, including the first
        base_delay: Seconds; attempt n waits base_delay * n before attempt n + 1
    """

    batch_size: int = 500
    concurrency_limit: int = 5
    max_retries: int = 3
    base_delay: float = 1.0

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")


@dataclass(frozen=True)
class DispatchError:
    batch: str
    message: str


@dataclass
class DispatchResult:
    """Aggregate outcome; success_count + failed_count equals profiles submitted."""

    success_count: int = 0
    failed_count: int = 0
    errors: List[DispatchError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success_count + self.failed_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": self.success_count,
            "failed": self.failed_count,
            "errors": [{"batch": e.batch, "error": e.message} for e in self.errors],
        }
