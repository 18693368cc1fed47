"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Literal, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App settings
    app_name: str = "Label Verification API"
    debug: bool = False

    # CORS - Allow all origins for prototype (restrict in production)
    cors_origins: list[str] = ["*"]

    # Upload limits (checked before verification runs)
    max_upload_size_mb: int = 15
    max_base64_length: int = 25_000_000  # ~20MB original image after base64 inflation
    allowed_extensions: set = {"png", "jpg", "jpeg", "webp"}
    min_upload_dimension: int = 100

    # Extraction provider: "mistral" (OCR text), "groq_vision" (direct fields), "easyocr" (local OCR text)
    extraction_provider: Literal["mistral", "groq_vision", "easyocr"] = "mistral"
    # LLM used to split raw OCR text into the five fields
    llm_provider: Literal["groq", "openrouter"] = "groq"

    # Provider credentials
    mistral_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None

    # Provider endpoints and models
    mistral_ocr_url: str = "https://api.mistral.ai/v1/ocr"
    mistral_ocr_model: str = "mistral-ocr-latest"
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_text_model: str = "openai/gpt-oss-20b"
    groq_vision_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "google/gemini-3-flash-preview"
    llm_max_tokens: int = 1500

    # Transport behaviour (retries are the transport's concern, never the matchers')
    provider_timeout_seconds: float = 30.0
    provider_max_retries: int = 0

    # Local OCR settings (easyocr provider only)
    ocr_lang: str = "en"
    ocr_max_concurrent: int = 1  # Single OCR at a time (CPU-bound, no benefit from concurrency)
    max_image_dimension: int = 1600  # Downscale before OCR
    min_image_dimension: int = 300  # Below this, upscale for OCR
    blur_threshold: float = 50.0
    contrast_threshold: float = 20.0

    # Batch processing (sequential)
    max_batch_size: int = 50

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
