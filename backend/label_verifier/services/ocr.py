"""Local OCR engine using EasyOCR.

Used by the easyocr extraction provider. The engine is loaded once per
process (singleton) and inference is bounded by a semaphore because it is
CPU-bound.
"""

import numpy as np
from typing import Optional, List
from dataclasses import dataclass, field
import logging
import os
import re
import threading
import unicodedata

from ..config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class OCRBox:
    """Represents a detected text box with position and confidence."""
    text: str
    confidence: float
    bbox: List[List[int]]  # [[x1,y1], [x2,y2], [x3,y3], [x4,y4]]

    @property
    def top(self) -> int:
        return min(p[1] for p in self.bbox)

    @property
    def bottom(self) -> int:
        return max(p[1] for p in self.bbox)

    @property
    def left(self) -> int:
        return min(p[0] for p in self.bbox)

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def center_y(self) -> int:
        return (self.top + self.bottom) // 2


@dataclass
class OCRResult:
    """Result from OCR processing."""
    boxes: List[OCRBox]
    raw_text: str
    average_confidence: float
    metrics: dict = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "OCRResult":
        """Create empty result for failed OCR."""
        return cls(boxes=[], raw_text="", average_confidence=0.0)


class OCRService:
    """EasyOCR wrapper service."""

    _instance: Optional["OCRService"] = None
    _reader = None
    _initialized = False
    _lock = threading.Lock()
    _semaphore: Optional[threading.Semaphore] = None

    def __new__(cls):
        """Singleton pattern to reuse OCR engine."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        self.settings = get_settings()
        if self._semaphore is None:
            OCRService._semaphore = threading.Semaphore(self.settings.ocr_max_concurrent)

    def initialize(self) -> bool:
        """
        Initialize OCR engine. Call on app startup.
        Thread-safe initialization.

        Returns:
            True if initialization successful
        """
        with self._lock:
            if self._initialized:
                return True

            try:
                import easyocr
                import torch

                num_threads = int(os.environ.get("TORCH_NUM_THREADS", min(4, os.cpu_count() or 2)))
                torch.set_num_threads(num_threads)

                logger.info(f"Initializing EasyOCR engine with {num_threads} threads...")
                model_dir = os.environ.get("EASYOCR_MODULE_PATH")

                OCRService._reader = easyocr.Reader(
                    [self.settings.ocr_lang],
                    gpu=False,
                    model_storage_directory=model_dir,
                    verbose=False
                )

                OCRService._initialized = True
                logger.info("EasyOCR initialized successfully")
                return True

            except (ImportError, OSError, RuntimeError) as e:
                logger.error(f"Failed to initialize EasyOCR: {e}")
                return False

    @property
    def is_ready(self) -> bool:
        """Check if OCR engine is ready."""
        return self._initialized and self._reader is not None

    def process(self, image: np.ndarray) -> OCRResult:
        """
        Run one OCR pass on a preprocessed image.

        Args:
            image: Image as numpy array (BGR or grayscale)

        Returns:
            OCRResult with boxes and reading-order raw text (one line per text row)
        """
        if not self.is_ready:
            logger.error("OCR engine not initialized")
            return OCRResult.empty()

        with self._semaphore:
            try:
                results = self._reader.readtext(
                    image,
                    decoder="greedy",
                    batch_size=1,
                    paragraph=False,
                )
            except RuntimeError as e:
                logger.error(f"OCR processing failed: {e}")
                return OCRResult.empty()

        if not results:
            logger.warning("OCR returned no results")
            return OCRResult.empty()

        boxes = []
        for bbox_points, text, confidence in results:
            normalized_text = self._normalize_text(text)
            if not normalized_text:
                continue
            boxes.append(OCRBox(
                text=normalized_text,
                confidence=float(confidence),
                bbox=[[int(p[0]), int(p[1])] for p in bbox_points]
            ))

        if not boxes:
            return OCRResult.empty()

        avg_confidence = sum(b.confidence for b in boxes) / len(boxes)
        raw_text = self._boxes_to_text(boxes)
        logger.info(f"OCR metrics: confidence={avg_confidence:.2f}, tokens={len(boxes)}")

        return OCRResult(
            boxes=boxes,
            raw_text=raw_text,
            average_confidence=avg_confidence,
            metrics={"confidence": avg_confidence, "token_count": len(boxes)}
        )

    def _boxes_to_text(self, boxes: List[OCRBox]) -> str:
        """Order boxes top-to-bottom, left-to-right; one output line per text row."""
        # Dynamic line height based on median box height for better word ordering
        line_h = int(np.median([b.height for b in boxes]))
        line_h = max(12, min(line_h, 60))

        lines: List[List[OCRBox]] = []
        for box in sorted(boxes, key=lambda b: (b.center_y, b.left)):
            if lines and abs(box.center_y - lines[-1][0].center_y) <= line_h // 2:
                lines[-1].append(box)
            else:
                lines.append([box])

        return "\n".join(
            " ".join(b.text for b in sorted(line, key=lambda b: b.left))
            for line in lines
        )

    def _normalize_text(self, text: str) -> str:
        """
        Normalize OCR text output.
        - Unicode NFKC normalization
        - Collapse whitespace
        - Strip leading/trailing whitespace
        """
        normalized = unicodedata.normalize("NFKC", text)
        normalized = re.sub(r"\s+", " ", normalized)
        return normalized.strip()
