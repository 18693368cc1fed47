"""Tests for the local OCR engine wrapper."""

from unittest.mock import MagicMock

import numpy as np
import pytest

from label_verifier.services.ocr import OCRBox, OCRResult, OCRService


def box(points_top_left, text, confidence=0.9, width=80, height=20):
    x, y = points_top_left
    return ([[x, y], [x + width, y], [x + width, y + height], [x, y + height]], text, confidence)


@pytest.fixture
def ocr_service(monkeypatch):
    """OCRService with a stubbed EasyOCR reader."""
    reader = MagicMock()
    monkeypatch.setattr(OCRService, "_reader", reader)
    monkeypatch.setattr(OCRService, "_initialized", True)
    return OCRService()


class TestOCRBox:
    """Test box geometry helpers."""

    def test_geometry(self):
        b = OCRBox(text="OLD TOM", confidence=0.9, bbox=[[10, 20], [90, 20], [90, 40], [10, 40]])

        assert b.top == 20
        assert b.bottom == 40
        assert b.left == 10
        assert b.height == 20
        assert b.center_y == 30


class TestOCRService:
    """Test OCR processing with a stubbed reader."""

    def test_singleton(self):
        assert OCRService() is OCRService()

    def test_orders_boxes_into_lines(self, ocr_service):
        ocr_service._reader.readtext.return_value = [
            box((200, 102), "DISTILLERY"),
            box((10, 100), "OLD TOM"),
            box((10, 200), "750 mL"),
        ]

        result = ocr_service.process(np.zeros((300, 400, 3), dtype=np.uint8))

        assert result.raw_text == "OLD TOM DISTILLERY\n750 mL"
        assert result.metrics["token_count"] == 3
        assert result.average_confidence == pytest.approx(0.9)

    def test_normalizes_and_drops_blank_text(self, ocr_service):
        ocr_service._reader.readtext.return_value = [
            box((10, 10), "  45% ALC  "),
            box((10, 100), "   "),
        ]

        result = ocr_service.process(np.zeros((200, 200, 3), dtype=np.uint8))

        assert result.raw_text == "45% ALC"
        assert len(result.boxes) == 1

    def test_no_results(self, ocr_service):
        ocr_service._reader.readtext.return_value = []

        result = ocr_service.process(np.zeros((10, 10, 3), dtype=np.uint8))

        assert result.raw_text == ""
        assert result.boxes == []

    def test_runtime_error_returns_empty(self, ocr_service):
        ocr_service._reader.readtext.side_effect = RuntimeError("inference failed")

        result = ocr_service.process(np.zeros((10, 10, 3), dtype=np.uint8))

        assert result.raw_text == ""

    def test_not_ready_returns_empty(self, monkeypatch):
        monkeypatch.setattr(OCRService, "_reader", None)
        monkeypatch.setattr(OCRService, "_initialized", False)

        result = OCRService().process(np.zeros((10, 10, 3), dtype=np.uint8))

        assert result == OCRResult.empty()
