"""Exception hierarchy for the conversion pipeline.

Per-record rejections from the record store are *not* exceptions: they come
back as ``SaveResult`` values and are reported on the record's outcome.
Only conditions that invalidate a whole run or a whole page raise.
"""
from __future__ import annotations


class ConversionError(Exception):
    """Base class for failures that abort a run or a page."""


class ScopeError(ConversionError):
    """The scope filter is malformed; raised before any page runs."""


class CorrelationError(ConversionError):
    """Generated entities cannot be mapped back to their sources unambiguously."""


class StoreError(ConversionError):
    """A bulk call against the record store failed as a whole."""

    def __init__(self, operation: str, entity_type: str, message: str) -> None:
        super().__init__(f"{operation} on {entity_type} failed: {message}")
        self.operation = operation
        self.entity_type = entity_type
