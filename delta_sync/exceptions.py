"""
Exception types raised by the delta pipeline.

Row and field level errors are absorbed by the component that raises them,
batch level errors are isolated by the dispatcher, and only SourceReadError
is fatal to a run.
"""

from typing import Optional


class NormalizationError(Exception):
    """A raw row could not be turned into a canonical record."""

    reason = "normalization_failed"


class MissingIdentity(NormalizationError):
    reason = "missing_identity"


class MissingProductId(NormalizationError):
    reason = "missing_product_id"


class NestedFieldParseError(Exception):
    """The serialized sub-item list of a row is not a JSON list."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


class SourceReadError(Exception):
    """An input row collection could not be listed, downloaded or parsed."""


class IngestionError(Exception):
    """A call to the ingestion API failed. Always retryable."""


class NetworkError(IngestionError):
    pass


class RequestTimeout(IngestionError):
    pass


class NonSuccessStatus(IngestionError):
    def __init__(self, status_code: int, body: Optional[str] = None):
        message = f"Ingestion API returned HTTP {status_code}"
        if body:
            message += f": {body[:200]}"
        super().__init__(message)
        self.status_code = status_code
