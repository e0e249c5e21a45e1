"""Exceptions raised at the core's input boundary."""

from __future__ import annotations


class InvalidRecordError(ValueError):
    """Raised when a node, edge or flow record is missing required fields.

    Raised before any state is touched: a rejected record is never
    partially applied.
    """

    def __init__(self, record_type: str, reason: str) -> None:
        super().__init__(f"invalid {record_type} record: {reason}")
        self.record_type = record_type
        self.reason = reason
