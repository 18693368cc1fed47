"""Verification service: compares label fields against application data.

Pipeline for one label:
1. Extract (text or fields) through the configured ExtractionAdapter
2. Decompose raw text into the five fields when the provider returned text
3. Run the five field matchers in fixed order
4. Overall pass iff every field matches

Extraction and decomposition failures end the call with a VerificationError;
no FieldVerdict is produced for a failed call.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from rapidfuzz import fuzz

from .extraction import (
    ExtractedRecord,
    ExtractionAdapter,
    ExtractionKind,
    FieldDecomposer,
    LabelFields,
    LabelImage,
    build_extraction_adapter,
    build_field_decomposer,
)
from .matching import FIELD_MATCHERS
from .normalization import normalize
from ..exceptions import ErrorKind, ExtractionError, FieldDecompositionError

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    """Overall result of a verification."""
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class FieldVerdict:
    """Result of verifying a single field."""
    field_name: str
    submitted: str
    detected: str
    match: bool
    confidence: float
    message: str = ""
    provider_confidence: Optional[float] = None
    provider_notes: Optional[str] = None


@dataclass(frozen=True)
class VerificationOutcome:
    """Complete verification result for one label."""
    fields: Tuple[FieldVerdict, ...]
    overall: Verdict
    raw_text: str
    processing_time_ms: int
    provider: str = ""
    summary: str = ""

    @property
    def passed(self) -> bool:
        return self.overall == Verdict.PASS

    @property
    def failed_fields(self) -> Tuple[str, ...]:
        return tuple(f.field_name for f in self.fields if not f.match)


@dataclass(frozen=True)
class VerificationError:
    """Typed failure returned instead of an outcome."""
    kind: ErrorKind
    message: str
    processing_time_ms: int = 0
    details: Dict = field(default_factory=dict)


VerificationResult = Union[VerificationOutcome, VerificationError]


def _field_message(field_name: str, submitted: str, detected: str, match: bool) -> str:
    """Plain-English explanation for a field verdict."""
    if match:
        return f"{field_name} matches"
    if not detected:
        return f"{field_name} not detected on label"
    if not submitted:
        return f"{field_name} missing from application"
    similarity = fuzz.ratio(normalize(submitted), normalize(detected)) / 100.0
    return (
        f"{field_name} does not match. Label shows '{detected}' but application "
        f"states '{submitted}'. Similarity: {similarity:.0%}"
    )


def verify_fields(
    submitted: LabelFields,
    detected: LabelFields,
    provider_confidence: Optional[Dict[str, float]] = None,
    provider_notes: Optional[Dict[str, str]] = None,
) -> Tuple[FieldVerdict, ...]:
    """
    Run all five field matchers in fixed order.

    Pure and synchronous: every field is evaluated even if an earlier one
    failed. Confidence is 1.0 for a match and 0.0 otherwise; any score the
    provider reported is kept alongside as advisory data.
    """
    provider_confidence = provider_confidence or {}
    provider_notes = provider_notes or {}

    verdicts = []
    for field_name, attr, matcher in FIELD_MATCHERS:
        submitted_value = getattr(submitted, attr) or ""
        detected_value = getattr(detected, attr) or ""
        match = matcher(submitted_value, detected_value)

        if not match:
            logger.debug(f"{field_name} mismatch: submitted='{submitted_value}' detected='{detected_value}'")

        verdicts.append(FieldVerdict(
            field_name=field_name,
            submitted=submitted_value,
            detected=detected_value,
            match=match,
            confidence=1.0 if match else 0.0,
            message=_field_message(field_name, submitted_value, detected_value, match),
            provider_confidence=provider_confidence.get(attr),
            provider_notes=provider_notes.get(attr),
        ))

    return tuple(verdicts)


def generate_summary(fields: Tuple[FieldVerdict, ...], overall: Verdict) -> str:
    """Generate human-readable summary."""
    if overall == Verdict.PASS:
        return "✅ All fields verified successfully. Label matches application data."

    issues = [f"❌ {f.field_name}: {f.message}" for f in fields if not f.match]
    return "❌ Verification failed. Issues found:\n" + "\n".join(issues)


class VerificationService:
    """Runs extraction, decomposition and field matching for one label at a time."""

    def __init__(
        self,
        extractor: Optional[ExtractionAdapter] = None,
        decomposer: Optional[FieldDecomposer] = None,
    ):
        self.extractor = extractor or build_extraction_adapter()
        self.decomposer = decomposer or build_field_decomposer()

    @property
    def provider_name(self) -> str:
        return self.extractor.name

    def extract_fields(self, image: LabelImage) -> Tuple[ExtractedRecord, LabelFields]:
        """
        Extract the five raw field strings from an image.

        Raises:
            ExtractionError: provider failed
            FieldDecompositionError: raw text could not be split into fields
        """
        record = self.extractor.extract(image)

        if record.kind == ExtractionKind.RAW_TEXT:
            if self.decomposer is None:
                raise FieldDecompositionError("No field decomposer configured for raw text")
            detected = self.decomposer.decompose(record.raw_text)
        else:
            detected = record.fields or LabelFields()

        return record, detected

    def verify(self, image: LabelImage, submitted: LabelFields) -> VerificationResult:
        """
        Verify a label image against submitted application data.

        Args:
            image: Label image bytes and content type
            submitted: The five fields from the application

        Returns:
            VerificationOutcome, or VerificationError when extraction or
            decomposition failed
        """
        start_time = time.time()

        try:
            record, detected = self.extract_fields(image)
        except ExtractionError as e:
            elapsed = int((time.time() - start_time) * 1000)
            logger.warning(f"Extraction failed ({self.provider_name}): {e.message}")
            return VerificationError(
                kind=e.code, message=e.message, processing_time_ms=elapsed, details=e.details
            )
        except FieldDecompositionError as e:
            elapsed = int((time.time() - start_time) * 1000)
            logger.warning(f"Field decomposition failed: {e.message}")
            return VerificationError(
                kind=e.code, message=e.message, processing_time_ms=elapsed, details=e.details
            )

        fields = verify_fields(
            submitted,
            detected,
            provider_confidence=record.field_confidence,
            provider_notes=record.field_notes,
        )
        overall = Verdict.PASS if all(f.match for f in fields) else Verdict.FAIL
        elapsed = int((time.time() - start_time) * 1000)

        logger.info(
            f"Verification {overall.value} via {record.provider or self.provider_name} "
            f"({sum(f.match for f in fields)}/{len(fields)} fields, {elapsed}ms)"
        )

        return VerificationOutcome(
            fields=fields,
            overall=overall,
            raw_text=record.raw_text,
            processing_time_ms=elapsed,
            provider=record.provider or self.provider_name,
            summary=generate_summary(fields, overall),
        )
