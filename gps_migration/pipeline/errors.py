"""Exceptions raised by the migration pipeline."""
from __future__ import annotations


class MigrationError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(MigrationError):
    """Settings are incomplete or the stage graph is inconsistent."""


class RecordWriteError(MigrationError):
    """A single record was rejected by a destination store.

    Raised for constraint violations and malformed payloads. Stages count the
    record as failed and continue with the next one; connection-level errors
    are not wrapped and abort the stage instead.
    """

    def __init__(self, message: str, *, target: str | None = None) -> None:
        super().__init__(message)
        self.target = target

    def __str__(self) -> str:
        base = super().__str__()
        return f"{self.target}: {base}" if self.target else base


__all__ = ["MigrationError", "ConfigurationError", "RecordWriteError"]
