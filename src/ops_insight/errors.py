"""Error kinds raised by the insight engine and its stores.

Computation-layer conditions (missing embedding capability, too few
samples) are normally absorbed into "produces nothing" at the pipeline
boundary. Only store I/O failures reach callers, and bulk writes isolate
them per item.
"""

from __future__ import annotations


class InsightEngineError(Exception):
    """Base class for all ops_insight errors."""


class CapabilityUnavailable(InsightEngineError):
    """The embedding capability could not be loaded."""


class InsufficientData(InsightEngineError):
    """Fewer samples than a metric's minimum."""

    def __init__(self, metric: str, count: int, minimum: int) -> None:
        super().__init__(f"{metric}: {count} samples, need at least {minimum}")
        self.metric = metric
        self.count = count
        self.minimum = minimum


class PersistenceFailure(InsightEngineError):
    """A store call failed."""

    def __init__(self, operation: str, item_id: str | None, cause: Exception) -> None:
        target = f" {item_id}" if item_id else ""
        super().__init__(f"{operation}{target} failed: {cause}")
        self.operation = operation
        self.item_id = item_id
        self.cause = cause


class InvalidRecord(InsightEngineError):
    """A stored row could not be decoded into a domain object."""

    def __init__(self, kind: str, record_id: str | None, reason: str) -> None:
        super().__init__(f"Malformed {kind} record {record_id or '?'}: {reason}")
        self.kind = kind
        self.record_id = record_id
        self.reason = reason
