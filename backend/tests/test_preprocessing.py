"""Tests for image validation and preprocessing."""

import pytest
import numpy as np
from PIL import Image
import io

from label_verifier.services.preprocessing import ImagePreprocessor
from label_verifier.config import get_settings


def image_bytes(width, height, fmt="PNG", pattern=True):
    """Create an in-memory test image."""
    img = Image.new("RGB", (width, height), color="white")
    if pattern:
        pixels = img.load()
        for i in range(width // 4, 3 * width // 4):
            for j in range(height // 3, 2 * height // 3):
                if (i + j) % 10 < 5:
                    pixels[i, j] = (0, 0, 0)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def preprocessor():
    """Create preprocessor instance."""
    return ImagePreprocessor()


@pytest.fixture
def sample_image_bytes():
    """A 400x200 label-sized image."""
    return image_bytes(400, 200)


class TestImageValidation:
    """Test upload validation."""

    def test_valid_image(self, preprocessor, sample_image_bytes):
        is_valid, error = preprocessor.validate_image(sample_image_bytes, "label.png")
        assert is_valid is True
        assert error == ""

    def test_invalid_extension(self, preprocessor, sample_image_bytes):
        is_valid, error = preprocessor.validate_image(sample_image_bytes, "label.gif")
        assert is_valid is False
        assert "Allowed formats" in error

    def test_missing_filename_skips_extension_check(self, preprocessor, sample_image_bytes):
        is_valid, _ = preprocessor.validate_image(sample_image_bytes, None)
        assert is_valid is True

    def test_image_too_small(self, preprocessor):
        is_valid, error = preprocessor.validate_image(image_bytes(50, 50), "small.png")
        assert is_valid is False
        assert "too small" in error.lower()

    def test_undecodable_data(self, preprocessor):
        is_valid, error = preprocessor.validate_image(b"not an image", "label.png")
        assert is_valid is False
        assert "Unable to read" in error

    def test_decompression_bomb(self, preprocessor, sample_image_bytes, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

        is_valid, error = preprocessor.validate_image(sample_image_bytes, "label.png")

        assert is_valid is False
        assert "too large" in error

    def test_empty_data(self, preprocessor):
        is_valid, error = preprocessor.validate_image(b"", "label.png")
        assert is_valid is False
        assert "empty" in error.lower()

    def test_oversized_upload(self, preprocessor, sample_image_bytes, monkeypatch):
        monkeypatch.setattr(preprocessor.settings, "max_upload_size_mb", 0)

        is_valid, error = preprocessor.validate_image(sample_image_bytes, "label.png")

        assert is_valid is False
        assert "upload limit" in error


class TestPreprocess:
    """Test the OCR preprocessing pipeline."""

    def test_get_image_info(self, preprocessor, sample_image_bytes):
        info = preprocessor.get_image_info(sample_image_bytes)

        assert info["format"] == "PNG"
        assert info["width"] == 400
        assert info["height"] == 200
        assert info["size_bytes"] > 0

    def test_returns_bgr_array(self, preprocessor, sample_image_bytes):
        result, metadata = preprocessor.preprocess(sample_image_bytes)

        assert isinstance(result, np.ndarray)
        assert result.ndim == 3
        assert result.shape[2] == 3
        assert metadata["original_size"] == (200, 400)

    def test_always_applies_cheap_steps(self, preprocessor, sample_image_bytes):
        _, metadata = preprocessor.preprocess(sample_image_bytes)

        steps = metadata["preprocessing_steps"]
        assert "grayscale" in steps
        assert "sharpen" in steps
        assert "clahe" in steps

    def test_downscales_large_image(self, preprocessor):
        result, metadata = preprocessor.preprocess(image_bytes(2400, 1200, pattern=False))

        settings = get_settings()
        assert max(result.shape[:2]) <= settings.max_image_dimension
        assert "downscale" in metadata["preprocessing_steps"]

    def test_upscales_tiny_image(self, preprocessor):
        result, metadata = preprocessor.preprocess(image_bytes(120, 100))

        assert result.shape[:2] == (200, 240)
        assert "upscale_2x" in metadata["preprocessing_steps"]

    def test_blank_image_is_denoised_with_recommendation(self, preprocessor):
        """A flat white image has no edges and no contrast."""
        _, metadata = preprocessor.preprocess(image_bytes(400, 400, pattern=False))

        assert metadata["quality"]["is_blurry"] is True
        assert metadata["quality"]["is_low_contrast"] is True
        assert "denoise" in metadata["preprocessing_steps"]
        assert "quality_recommendation" in metadata

    def test_accepts_jpeg(self, preprocessor):
        result, _ = preprocessor.preprocess(image_bytes(400, 200, fmt="JPEG"))
        assert result.shape[2] == 3
