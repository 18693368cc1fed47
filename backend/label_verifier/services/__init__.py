"""Services for extraction, field matching, verification, and batch processing."""

from .preprocessing import ImagePreprocessor
from .ocr import OCRService, OCRResult, OCRBox
from .extraction import (
    LabelFields,
    LabelImage,
    ExtractedRecord,
    ExtractionKind,
    ExtractionAdapter,
    FieldDecomposer,
    MistralOCRProvider,
    GroqVisionProvider,
    EasyOCRProvider,
    LLMFieldDecomposer,
    build_extraction_adapter,
    build_field_decomposer,
)
from .verification import (
    VerificationService,
    VerificationOutcome,
    VerificationError,
    FieldVerdict,
    Verdict,
    verify_fields,
)
from .batch import CSVParser, CSVRow, CSVValidationError, BatchItemResult, SequentialBatchProcessor

__all__ = [
    "ImagePreprocessor",
    "OCRService",
    "OCRResult",
    "OCRBox",
    "LabelFields",
    "LabelImage",
    "ExtractedRecord",
    "ExtractionKind",
    "ExtractionAdapter",
    "FieldDecomposer",
    "MistralOCRProvider",
    "GroqVisionProvider",
    "EasyOCRProvider",
    "LLMFieldDecomposer",
    "build_extraction_adapter",
    "build_field_decomposer",
    "VerificationService",
    "VerificationOutcome",
    "VerificationError",
    "FieldVerdict",
    "Verdict",
    "verify_fields",
    "CSVParser",
    "CSVRow",
    "CSVValidationError",
    "BatchItemResult",
    "SequentialBatchProcessor",
]
