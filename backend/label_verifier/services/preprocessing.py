"""Image validation and preprocessing for the local OCR provider.

Pipeline (cheap steps always, expensive steps only when quality is poor):
- Load any Pillow-readable format into an OpenCV BGR array
- Blur/contrast assessment
- Clamp max dimension, upscale tiny images
- Grayscale
- Denoise (only blurry or low-contrast images)
- Light sharpening
- CLAHE contrast enhancement
"""

import cv2
import numpy as np
from PIL import Image
import io
from typing import Tuple, Optional
from dataclasses import dataclass
import logging

from ..config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class ImageQuality:
    """Image quality assessment results."""
    blur_score: float  # Laplacian variance - higher = sharper
    contrast_score: float  # Std deviation - higher = more contrast
    is_blurry: bool
    is_low_contrast: bool
    recommendation: Optional[str] = None


class ImagePreprocessor:
    """Validates uploads and prepares images for OCR."""

    def __init__(self):
        self.settings = get_settings()

    def preprocess(self, image_bytes: bytes) -> Tuple[np.ndarray, dict]:
        """
        Preprocess image for OCR.

        Args:
            image_bytes: Raw image bytes

        Returns:
            Tuple of (preprocessed BGR image as numpy array, metadata dict)
        """
        image = self._load_image(image_bytes)

        metadata = {
            "original_size": image.shape[:2],
            "preprocessing_steps": [],
            "quality": {}
        }

        quality = self._assess_quality(image)
        metadata["quality"] = {
            "blur_score": quality.blur_score,
            "contrast_score": quality.contrast_score,
            "is_blurry": quality.is_blurry,
            "is_low_contrast": quality.is_low_contrast
        }
        if quality.recommendation:
            metadata["quality_recommendation"] = quality.recommendation

        image, resize_action = self._resize(image)
        if resize_action:
            metadata["preprocessing_steps"].append(resize_action)
            metadata["resized_to"] = image.shape[:2]

        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        metadata["preprocessing_steps"].append("grayscale")

        # Denoise is the most expensive step; skip it for clean images
        if quality.is_blurry or quality.is_low_contrast:
            gray = cv2.fastNlMeansDenoising(gray, None, h=10, templateWindowSize=7, searchWindowSize=21)
            metadata["preprocessing_steps"].append("denoise")

        sharpened = self._sharpen(gray)
        metadata["preprocessing_steps"].append("sharpen")

        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        enhanced = clahe.apply(sharpened)
        metadata["preprocessing_steps"].append("clahe")

        return cv2.cvtColor(enhanced, cv2.COLOR_GRAY2BGR), metadata

    def _assess_quality(self, image: np.ndarray) -> ImageQuality:
        """Assess image quality (blur, contrast) to guide preprocessing."""
        if len(image.shape) == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image

        # Blur detection using Laplacian variance
        blur_score = float(cv2.Laplacian(gray, cv2.CV_64F).var())
        contrast_score = float(gray.std())

        is_blurry = blur_score < self.settings.blur_threshold
        is_low_contrast = contrast_score < self.settings.contrast_threshold

        recommendation = None
        if is_blurry and is_low_contrast:
            recommendation = "Image is blurry and has low contrast. Please retake with better focus and lighting."
        elif is_blurry:
            recommendation = "Image appears blurry. Please retake with better focus or hold camera steady."
        elif is_low_contrast:
            recommendation = "Image has low contrast. Please ensure good lighting on the label."

        return ImageQuality(
            blur_score=blur_score,
            contrast_score=contrast_score,
            is_blurry=is_blurry,
            is_low_contrast=is_low_contrast,
            recommendation=recommendation
        )

    def _resize(self, image: np.ndarray) -> Tuple[np.ndarray, Optional[str]]:
        """Clamp the largest side to max_image_dimension; double tiny images."""
        height, width = image.shape[:2]
        max_dim = self.settings.max_image_dimension
        min_dim = self.settings.min_image_dimension

        if max(width, height) > max_dim:
            scale = max_dim / max(width, height)
            resized = cv2.resize(image, (int(width * scale), int(height * scale)), interpolation=cv2.INTER_AREA)
            return resized, "downscale"

        if max(width, height) < min_dim:
            resized = cv2.resize(image, (width * 2, height * 2), interpolation=cv2.INTER_CUBIC)
            return resized, "upscale_2x"

        return image, None

    def _sharpen(self, image: np.ndarray) -> np.ndarray:
        """Apply light unsharp masking to enhance text edges."""
        gaussian = cv2.GaussianBlur(image, (0, 0), 2.0)
        return cv2.addWeighted(image, 1.3, gaussian, -0.3, 0)

    def _load_image(self, image_bytes: bytes) -> np.ndarray:
        """Load image from bytes."""
        # Use PIL to handle various formats, then convert to OpenCV
        pil_image = Image.open(io.BytesIO(image_bytes))

        if pil_image.mode != "RGB":
            pil_image = pil_image.convert("RGB")

        image = np.array(pil_image)
        return cv2.cvtColor(image, cv2.COLOR_RGB2BGR)

    def get_image_info(self, image_bytes: bytes) -> dict:
        """Get basic image information without full preprocessing."""
        pil_image = Image.open(io.BytesIO(image_bytes))
        return {
            "format": pil_image.format,
            "mode": pil_image.mode,
            "width": pil_image.width,
            "height": pil_image.height,
            "size_bytes": len(image_bytes),
            "size_mb": len(image_bytes) / (1024 * 1024)
        }

    def validate_image(self, image_bytes: bytes, filename: Optional[str]) -> Tuple[bool, str]:
        """
        Validate an uploaded image before verification.

        A missing filename skips the extension check (base64 uploads carry a
        content type instead).

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not image_bytes:
            return False, "Image is empty."

        if filename is not None:
            ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
            if ext not in self.settings.allowed_extensions:
                allowed = ", ".join(sorted(self.settings.allowed_extensions)).upper()
                return False, f"Invalid file type. Allowed formats: {allowed}"

        size_mb = len(image_bytes) / (1024 * 1024)
        if size_mb > self.settings.max_upload_size_mb:
            return False, f"Image exceeds {self.settings.max_upload_size_mb}MB upload limit. Please resize or compress."

        min_dim = self.settings.min_upload_dimension
        try:
            info = self.get_image_info(image_bytes)
        except Image.DecompressionBombError:
            return False, "Image dimensions are too large. Please resize the label image."
        except (OSError, ValueError) as e:
            return False, f"Unable to read image: {str(e)}"
        if info["width"] < min_dim or info["height"] < min_dim:
            return False, f"Image too small. Minimum dimensions: {min_dim}x{min_dim} pixels."

        return True, ""
