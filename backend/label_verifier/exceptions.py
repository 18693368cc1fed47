"""
Typed error hierarchy for label verification.

Each exception carries a machine-readable code so failures can be reported
to callers without leaking provider or transport details.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Machine-readable failure categories."""
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    FIELD_DECOMPOSITION_FAILED = "FIELD_DECOMPOSITION_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    # Unexpected fault outside the provider boundary; never produced by the core
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LabelVerificationError(Exception):
    """Base exception for all label verification failures."""

    def __init__(self, code: ErrorKind, message: str, details: Optional[dict] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ExtractionError(LabelVerificationError):
    """The extraction provider was unreachable, unauthorized, or returned nothing usable."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(ErrorKind.EXTRACTION_FAILED, message, details)


class FieldDecompositionError(LabelVerificationError):
    """Text was extracted but could not be split into the five label fields."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(ErrorKind.FIELD_DECOMPOSITION_FAILED, message, details)


class InvalidInputError(LabelVerificationError):
    """The caller supplied an image or record that fails preconditions."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(ErrorKind.INVALID_INPUT, message, details)
