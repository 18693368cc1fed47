"""Pydantic models for request/response schemas."""

from .schemas import (
    LabelFormData,
    VerifyLabelRequest,
    FieldResult,
    VerificationResponse,
    DetectedFields,
    ExtractResponse,
    BatchRowResult,
    BatchVerificationResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    "LabelFormData",
    "VerifyLabelRequest",
    "FieldResult",
    "VerificationResponse",
    "DetectedFields",
    "ExtractResponse",
    "BatchRowResult",
    "BatchVerificationResponse",
    "ErrorResponse",
    "HealthResponse",
]
