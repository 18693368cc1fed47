"""Pydantic schemas for API requests and responses."""

from pydantic import BaseModel, Field
from typing import Literal, Optional

from ..services.matching import STANDARD_GOVERNMENT_WARNING


class LabelFormData(BaseModel):
    """Application data to verify a label against."""
    brand_name: str = Field(..., description="Brand name as filed on the application")
    class_type: str = Field("", description="Class/type designation (e.g., Kentucky Straight Bourbon Whiskey)")
    alcohol_content: str = Field("", description="Alcohol content (e.g., 45% Alc./Vol.)")
    net_contents: str = Field("", description="Net contents (e.g., 750 mL)")
    government_warning: str = Field(STANDARD_GOVERNMENT_WARNING, description="Government health warning text")

    class Config:
        json_schema_extra = {
            "example": {
                "brand_name": "OLD TOM DISTILLERY",
                "class_type": "Kentucky Straight Bourbon Whiskey",
                "alcohol_content": "45% Alc./Vol.",
                "net_contents": "750 mL",
            }
        }


class VerifyLabelRequest(BaseModel):
    """JSON request body for single label verification with a base64 image."""
    image_base64: str = ""
    image_type: str = "image/jpeg"
    form_data: LabelFormData


class FieldResult(BaseModel):
    """Result for a single field verification."""
    field_name: str
    submitted: str
    detected: str
    match: bool
    confidence: float = Field(ge=0.0, le=1.0)
    message: str
    provider_confidence: Optional[float] = None
    provider_notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "field_name": "Brand Name",
                "submitted": "Old Tom Distillery",
                "detected": "OLD TOM DISTILLERY",
                "match": True,
                "confidence": 1.0,
                "message": "Brand Name matches"
            }
        }


class VerificationResponse(BaseModel):
    """Response for single label verification."""
    success: bool
    overall: Optional[Literal["pass", "fail"]] = None
    fields: list[FieldResult] = []
    ocr_text: Optional[str] = None
    provider: Optional[str] = None
    summary: Optional[str] = None
    processing_time_ms: int = 0
    error: Optional[str] = None
    code: Optional[str] = None


class DetectedFields(BaseModel):
    """The five fields as read from the label."""
    brand_name: str = ""
    class_type: str = ""
    alcohol_content: str = ""
    net_contents: str = ""
    government_warning: str = ""


class ExtractResponse(BaseModel):
    """Response for extraction without verification."""
    success: bool
    raw_text: str = ""
    fields: Optional[DetectedFields] = None
    provider: Optional[str] = None
    processing_time_ms: int = 0
    error: Optional[str] = None
    code: Optional[str] = None


class BatchRowResult(BaseModel):
    """Result for a single row in batch verification."""
    filename: str
    row_number: int
    status: Literal["pass", "fail", "error"]
    result: Optional[VerificationResponse] = None
    error: Optional[str] = None
    code: Optional[str] = None


class BatchVerificationResponse(BaseModel):
    """Response for batch verification."""
    success: bool
    total: int
    processed: int
    passed: int
    failed: int
    errors: int
    results: list[BatchRowResult]
    validation_errors: list[str] = []
    processing_time_ms: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    code: Optional[str] = None
    detail: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "Invalid file type. Allowed formats: JPEG, JPG, PNG, WEBP",
                "code": "INVALID_INPUT"
            }
        }


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    provider: str
    provider_ready: bool
