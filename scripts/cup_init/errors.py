"""Exceptions raised by the reconciliation pipeline."""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for failures that end a run with a fatal verdict."""


class RetryExhaustedError(ReconcileError):
    """A bounded confirm/purge loop gave up before its condition held."""

    def __init__(self, description: str, attempts: int) -> None:
        super().__init__(f"{description}: condition not met after {attempts} attempts")
        self.description = description
        self.attempts = attempts


class MalformedRecordError(ReconcileError):
    """A profile row is missing fields the pipeline depends on."""
