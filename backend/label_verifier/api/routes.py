"""API route definitions."""

import time
from fastapi import APIRouter, UploadFile, File, Form, HTTPException
from typing import Optional, List
import logging

from ..models import (
    LabelFormData,
    VerifyLabelRequest,
    VerificationResponse,
    FieldResult,
    DetectedFields,
    ExtractResponse,
    ErrorResponse,
    HealthResponse,
    BatchVerificationResponse,
    BatchRowResult,
)
from ..services import (
    ImagePreprocessor,
    LabelFields,
    LabelImage,
    VerificationService,
    VerificationOutcome,
    VerificationError,
    CSVParser,
    SequentialBatchProcessor,
)
from ..services.matching import STANDARD_GOVERNMENT_WARNING
from ..exceptions import ErrorKind, LabelVerificationError, InvalidInputError
from ..config import get_settings
from .. import __version__

logger = logging.getLogger(__name__)
router = APIRouter()

# Initialize services
preprocessor = ImagePreprocessor()
verification_service = VerificationService()
csv_parser = CSVParser()
batch_processor = SequentialBatchProcessor()


def _outcome_response(outcome: VerificationOutcome) -> VerificationResponse:
    return VerificationResponse(
        success=True,
        overall=outcome.overall.value,
        fields=[
            FieldResult(
                field_name=f.field_name,
                submitted=f.submitted,
                detected=f.detected,
                match=f.match,
                confidence=f.confidence,
                message=f.message,
                provider_confidence=f.provider_confidence,
                provider_notes=f.provider_notes,
            )
            for f in outcome.fields
        ],
        ocr_text=outcome.raw_text,
        provider=outcome.provider,
        summary=outcome.summary,
        processing_time_ms=outcome.processing_time_ms,
    )


def _error_response(error: VerificationError) -> VerificationResponse:
    return VerificationResponse(
        success=False,
        error=error.message,
        code=error.kind.value,
        processing_time_ms=error.processing_time_ms,
    )


def _invalid_input(message: str) -> VerificationResponse:
    return VerificationResponse(success=False, error=message, code=ErrorKind.INVALID_INPUT.value)


def _run_verification(image: LabelImage, form: LabelFormData) -> VerificationResponse:
    """Validate inputs, run the verification core, and shape the response."""
    if not form.brand_name.strip():
        return _invalid_input("Brand name is required")

    is_valid, error_msg = preprocessor.validate_image(image.data, image.filename)
    if not is_valid:
        return _invalid_input(error_msg)

    submitted = LabelFields(
        brand_name=form.brand_name,
        class_type=form.class_type,
        alcohol_content=form.alcohol_content,
        net_contents=form.net_contents,
        government_warning=form.government_warning or STANDARD_GOVERNMENT_WARNING,
    )

    try:
        result = verification_service.verify(image, submitted)
    except Exception as e:
        logger.exception(f"Error processing image: {e}")
        return VerificationResponse(
            success=False,
            error="Internal error while verifying the label. Please try again.",
            code=ErrorKind.INTERNAL_ERROR.value,
        )

    if isinstance(result, VerificationError):
        return _error_response(result)
    return _outcome_response(result)


@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Check API health and extraction provider readiness."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        provider=verification_service.provider_name,
        provider_ready=verification_service.extractor.is_ready,
    )


@router.post(
    "/verify",
    response_model=VerificationResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
    },
    tags=["Verification"]
)
async def verify_label(
    image: UploadFile = File(..., description="Label image file"),
    brand_name: str = Form(..., description="Brand name on the application"),
    class_type: str = Form("", description="Class/type on the application"),
    alcohol_content: str = Form("", description="Alcohol content on the application"),
    net_contents: str = Form("", description="Net contents on the application"),
    government_warning: Optional[str] = Form(None, description="Government warning text (defaults to the standard warning)"),
):
    """
    Verify a single label image against application data.

    Upload a label image and provide the application's field values.
    Returns a pass/fail verdict for each of the five fields.
    """
    try:
        image_bytes = await image.read()
    except OSError as e:
        logger.error(f"Failed to read uploaded image: {e}")
        raise HTTPException(status_code=400, detail="Failed to read uploaded image")

    label_image = LabelImage(
        data=image_bytes,
        content_type=image.content_type or "image/jpeg",
        filename=image.filename or "unknown",
    )
    form = LabelFormData(
        brand_name=brand_name,
        class_type=class_type,
        alcohol_content=alcohol_content,
        net_contents=net_contents,
        government_warning=government_warning or STANDARD_GOVERNMENT_WARNING,
    )
    return _run_verification(label_image, form)


@router.post(
    "/verify/base64",
    response_model=VerificationResponse,
    tags=["Verification"]
)
async def verify_label_base64(request: VerifyLabelRequest):
    """
    Verify a base64-encoded label image against application data.

    Accepts a raw base64 string or a data URI in `image_base64`.
    """
    settings = get_settings()

    if not request.image_base64:
        return _invalid_input("Label image is required")

    if len(request.image_base64) > settings.max_base64_length:
        return _invalid_input("Image is too large. Please upload a smaller image.")

    try:
        label_image = LabelImage.from_base64(request.image_base64, content_type=request.image_type)
    except InvalidInputError as e:
        return _invalid_input(e.message)

    return _run_verification(label_image, request.form_data)


@router.post(
    "/extract",
    response_model=ExtractResponse,
    tags=["Extraction"]
)
async def extract_only(
    image: UploadFile = File(..., description="Label image file"),
):
    """
    Extract text and fields from a label image without verification.

    Useful for testing the configured extraction provider.
    """
    start_time = time.time()

    try:
        image_bytes = await image.read()
    except OSError as e:
        logger.error(f"Failed to read uploaded image: {e}")
        raise HTTPException(status_code=400, detail="Failed to read uploaded image")

    is_valid, error_msg = preprocessor.validate_image(image_bytes, image.filename or "unknown")
    if not is_valid:
        return ExtractResponse(success=False, error=error_msg, code=ErrorKind.INVALID_INPUT.value)

    label_image = LabelImage(
        data=image_bytes,
        content_type=image.content_type or "image/jpeg",
        filename=image.filename,
    )

    try:
        record, detected = verification_service.extract_fields(label_image)
    except LabelVerificationError as e:
        logger.warning(f"Extraction failed: {e.message}")
        return ExtractResponse(
            success=False,
            error=e.message,
            code=e.code.value,
            processing_time_ms=int((time.time() - start_time) * 1000),
        )

    return ExtractResponse(
        success=True,
        raw_text=record.raw_text,
        fields=DetectedFields(
            brand_name=detected.brand_name,
            class_type=detected.class_type,
            alcohol_content=detected.alcohol_content,
            net_contents=detected.net_contents,
            government_warning=detected.government_warning,
        ),
        provider=record.provider or verification_service.provider_name,
        processing_time_ms=int((time.time() - start_time) * 1000),
    )


@router.post(
    "/verify/batch",
    response_model=BatchVerificationResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
    },
    tags=["Verification"]
)
async def verify_batch(
    images: List[UploadFile] = File(..., description="Label image files"),
    csv_file: UploadFile = File(..., description="CSV file with application data"),
):
    """
    Verify multiple label images against application data from CSV.

    Rows are verified one at a time, in CSV order.

    CSV format:
    - Required columns: filename, brand_name, class_type, alcohol_content, net_contents
    - Optional column: government_warning (defaults to the standard warning)

    Example CSV:
    ```
    filename,brand_name,class_type,alcohol_content,net_contents
    label1.png,OLD TOM DISTILLERY,Kentucky Straight Bourbon Whiskey,45%,750 mL
    label2.png,Sierra Azul,Tequila,40% Alc./Vol.,1 Liter
    ```
    """
    start_time = time.time()
    settings = get_settings()

    if len(images) > settings.max_batch_size:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Maximum batch size is {settings.max_batch_size} files."
        )

    try:
        csv_content = (await csv_file.read()).decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=400,
            detail="CSV file must be UTF-8 encoded"
        )

    csv_rows, csv_errors = csv_parser.parse(csv_content)

    if not csv_rows:
        error_messages = [f"Row {e.row_number}: {e.field} - {e.message}" for e in csv_errors[:5]]
        raise HTTPException(
            status_code=400,
            detail=f"CSV validation failed: {'; '.join(error_messages) or 'no data rows'}"
        )

    image_data = {}
    for upload_file in images:
        filename = upload_file.filename or "unknown"
        image_data[filename] = LabelImage(
            data=await upload_file.read(),
            content_type=upload_file.content_type or "image/jpeg",
            filename=filename,
        )

    matched_rows, match_errors = csv_parser.validate_filenames_match(csv_rows, list(image_data.keys()))
    validation_errors = [
        f"Row {e.row_number}: {e.field} - {e.message}" for e in csv_errors + match_errors
    ]

    # Unmatched rows are still run so they surface as per-row errors
    results = batch_processor.process_batch(
        images=image_data,
        csv_rows=csv_rows,
        verification_service=verification_service,
        preprocessor=preprocessor,
    )

    batch_results = []
    for r in results:
        if r.outcome is not None:
            batch_results.append(BatchRowResult(
                filename=r.filename,
                row_number=r.row_number,
                status=r.status,
                result=_outcome_response(r.outcome),
            ))
        else:
            batch_results.append(BatchRowResult(
                filename=r.filename,
                row_number=r.row_number,
                status="error",
                error=r.error.message,
                code=r.error.kind.value,
            ))

    processing_time = int((time.time() - start_time) * 1000)
    logger.info(f"Batch of {len(csv_rows)} rows ({len(matched_rows)} matched) in {processing_time}ms")

    return BatchVerificationResponse(
        success=True,
        total=len(csv_rows),
        processed=sum(1 for r in results if r.outcome is not None),
        passed=sum(1 for r in results if r.status == "pass"),
        failed=sum(1 for r in results if r.status == "fail"),
        errors=sum(1 for r in results if r.status == "error"),
        results=batch_results,
        validation_errors=validation_errors,
        processing_time_ms=processing_time,
    )
