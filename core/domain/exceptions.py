from __future__ import annotations


class PriceIngestionError(Exception):
    """Base class for errors raised by the ingestion pipeline."""


class TickParseError(PriceIngestionError):
    """Upstream payload could not be turned into a tick. The message is dropped."""


class FeedConnectionError(PriceIngestionError):
    """Stream or outbound HTTP failure."""


class OperationTimeoutError(PriceIngestionError):
    """A persistence or outbound call exceeded its deadline."""

    def __init__(self, operation: str, seconds: float) -> None:
        super().__init__(f"{operation} timed out after {seconds:.1f}s")
        self.operation = operation
        self.seconds = seconds


class DuplicateRejected(PriceIngestionError):
    """Candidate matches already-stored data. Expected outcome, not a failure."""


class PayloadValidationError(PriceIngestionError):
    """Malformed client input on a write endpoint."""


class CircuitOpenError(PriceIngestionError):
    """The feed's circuit breaker is open; persistence is being skipped."""
