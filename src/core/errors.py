"""Sluice exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations


class SluiceError(Exception):
    """Base exception for all Sluice failures."""


class SluiceConfigError(SluiceError):
    """Raised for invalid runtime configuration or migration options."""


class SluiceSourceError(SluiceError):
    """Raised when the record source cannot be opened or read."""


class RecordMalformedError(SluiceError):
    """Raised for a single source row that cannot become a document.

    Attributes:
        index: Data-row index of the offending record.
    """

    def __init__(self, message: str, index: int) -> None:
        super().__init__(message)
        self.index = index


class SluiceSinkError(SluiceError):
    """Raised when the bulk sink is unreachable or misconfigured."""


class SluiceSinkTransportError(SluiceSinkError):
    """Raised for retryable transport failures of a whole bulk request."""


class SluiceSinkRequestError(SluiceSinkError):
    """Raised when the sink refuses a whole bulk request; retrying cannot help."""


class SluiceCheckpointError(SluiceError):
    """Raised when migration progress cannot be durably persisted."""


class SluiceRunSpecError(SluiceError):
    """Raised for invalid or unsupported run-spec configuration."""


class SluiceDependencyError(SluiceError):
    """Raised when an optional runtime dependency is missing."""


class SluiceStateError(SluiceError):
    """Raised for illegal migration state transitions."""
