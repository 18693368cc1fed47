"""Batch processing service for multiple label verification."""

import csv
import io
import time
import logging
from typing import Dict, List, Tuple, Optional
from dataclasses import dataclass

from .extraction import LabelFields, LabelImage
from .matching import STANDARD_GOVERNMENT_WARNING
from .verification import VerificationError, VerificationOutcome, VerificationService
from ..exceptions import ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class CSVRow:
    """Parsed and validated CSV row."""
    filename: str
    brand_name: str
    class_type: str
    alcohol_content: str
    net_contents: str
    government_warning: str = STANDARD_GOVERNMENT_WARNING
    row_number: int = 0

    def to_fields(self) -> LabelFields:
        """Application data for this row."""
        return LabelFields(
            brand_name=self.brand_name,
            class_type=self.class_type,
            alcohol_content=self.alcohol_content,
            net_contents=self.net_contents,
            government_warning=self.government_warning,
        )


@dataclass
class CSVValidationError:
    """Error from CSV validation."""
    row_number: int
    field: str
    message: str


@dataclass
class BatchItemResult:
    """Outcome of one batch row: a verification outcome or an error."""
    filename: str
    row_number: int
    outcome: Optional[VerificationOutcome] = None
    error: Optional[VerificationError] = None

    @property
    def status(self) -> str:
        """"pass", "fail" or "error"."""
        if self.outcome is None:
            return "error"
        return self.outcome.overall.value


class CSVParser:
    """Parse and validate batch CSV files."""

    REQUIRED_COLUMNS = ("filename", "brand_name", "class_type", "alcohol_content", "net_contents")
    OPTIONAL_COLUMNS = ("government_warning",)
    VALID_COLUMNS = set(REQUIRED_COLUMNS) | set(OPTIONAL_COLUMNS)

    def parse(self, csv_content: str) -> Tuple[List[CSVRow], List[CSVValidationError]]:
        """
        Parse CSV content and return validated rows.

        Header names are case-insensitive. A blank government_warning cell
        means the standard warning text.

        Args:
            csv_content: CSV file content as string

        Returns:
            Tuple of (valid_rows, errors)
        """
        rows: List[CSVRow] = []
        errors: List[CSVValidationError] = []

        try:
            reader = csv.DictReader(io.StringIO(csv_content))

            if reader.fieldnames is None:
                errors.append(CSVValidationError(
                    row_number=0,
                    field="header",
                    message="CSV file is empty or has no header"
                ))
                return rows, errors

            fieldnames = [f.lower().strip() for f in reader.fieldnames if f]

            missing_required = [c for c in self.REQUIRED_COLUMNS if c not in fieldnames]
            if missing_required:
                errors.append(CSVValidationError(
                    row_number=0,
                    field="header",
                    message=f"Missing required columns: {', '.join(missing_required)}"
                ))
                return rows, errors

            unknown_columns = set(fieldnames) - self.VALID_COLUMNS
            if unknown_columns:
                logger.warning(f"Unknown CSV columns will be ignored: {sorted(unknown_columns)}")

            # Row 1 is the header
            for row_num, row in enumerate(reader, start=2):
                normalized_row = {
                    k.lower().strip(): (v or "").strip()
                    for k, v in row.items()
                    if k is not None and isinstance(v, str)
                }

                # Skip fully blank lines
                if not any(normalized_row.values()):
                    continue

                row_errors = [
                    CSVValidationError(
                        row_number=row_num,
                        field=column,
                        message=f"{column} is required"
                    )
                    for column in self.REQUIRED_COLUMNS
                    if not normalized_row.get(column)
                ]

                if row_errors:
                    errors.extend(row_errors)
                    continue

                rows.append(CSVRow(
                    filename=normalized_row["filename"],
                    brand_name=normalized_row["brand_name"],
                    class_type=normalized_row["class_type"],
                    alcohol_content=normalized_row["alcohol_content"],
                    net_contents=normalized_row["net_contents"],
                    government_warning=normalized_row.get("government_warning") or STANDARD_GOVERNMENT_WARNING,
                    row_number=row_num,
                ))

        except csv.Error as e:
            errors.append(CSVValidationError(
                row_number=0,
                field="csv",
                message=f"CSV parsing error: {str(e)}"
            ))

        return rows, errors

    def validate_filenames_match(
        self,
        csv_rows: List[CSVRow],
        uploaded_filenames: List[str]
    ) -> Tuple[List[CSVRow], List[CSVValidationError]]:
        """
        Validate that CSV filenames match uploaded files.

        Returns:
            Tuple of (matched_rows, errors for unmatched)
        """
        uploaded_set = set(uploaded_filenames)
        matched_rows = []
        errors = []

        for row in csv_rows:
            if row.filename in uploaded_set:
                matched_rows.append(row)
            else:
                errors.append(CSVValidationError(
                    row_number=row.row_number,
                    field="filename",
                    message=f"Image file not found: '{row.filename}'"
                ))

        csv_filenames = {row.filename for row in csv_rows}
        for filename in sorted(uploaded_set - csv_filenames):
            errors.append(CSVValidationError(
                row_number=0,
                field="filename",
                message=f"Uploaded image has no CSV entry: '{filename}'"
            ))

        return matched_rows, errors


class SequentialBatchProcessor:
    """
    Verify a batch one row at a time with a shared VerificationService.

    Rows are processed in CSV order. Any failure is recorded on its own row
    and the batch continues.
    """

    def process_batch(
        self,
        images: Dict[str, LabelImage],
        csv_rows: List[CSVRow],
        verification_service: VerificationService,
        preprocessor=None,
    ) -> List[BatchItemResult]:
        """
        Process batch sequentially.

        Args:
            images: Dict mapping filename to label image
            csv_rows: List of CSVRow with application data
            verification_service: Shared verification service instance
            preprocessor: Optional ImagePreprocessor used to validate each image

        Returns:
            One BatchItemResult per row, in row order
        """
        results = []

        for row in csv_rows:
            start_time = time.time()
            filename = row.filename

            image = images.get(filename)
            if image is None:
                results.append(self._error(row, f"Image file not found: {filename}", start_time))
                continue

            try:
                if preprocessor is not None:
                    is_valid, error_msg = preprocessor.validate_image(image.data, filename)
                    if not is_valid:
                        results.append(self._error(row, error_msg, start_time))
                        continue

                result = verification_service.verify(image, row.to_fields())
            except Exception as e:
                logger.exception(f"Error processing {filename}: {e}")
                results.append(self._error(
                    row, f"Processing error: {str(e)}", start_time, kind=ErrorKind.INTERNAL_ERROR
                ))
                continue

            if isinstance(result, VerificationError):
                logger.warning(f"Row {row.row_number} ({filename}) failed: {result.message}")
                results.append(BatchItemResult(filename=filename, row_number=row.row_number, error=result))
            else:
                results.append(BatchItemResult(filename=filename, row_number=row.row_number, outcome=result))

        passed = sum(1 for r in results if r.status == "pass")
        logger.info(f"Batch complete: {passed}/{len(results)} passed")
        return results

    def _error(
        self,
        row: CSVRow,
        message: str,
        start_time: float,
        kind: ErrorKind = ErrorKind.INVALID_INPUT,
    ) -> BatchItemResult:
        elapsed = int((time.time() - start_time) * 1000)
        return BatchItemResult(
            filename=row.filename,
            row_number=row.row_number,
            error=VerificationError(kind=kind, message=message, processing_time_ms=elapsed),
        )
