"""Extraction adapters: turn a label image into text or into the five raw fields.

Two provider shapes sit behind one interface:
1. Text providers (Mistral OCR, local EasyOCR) return one block of raw text,
   which a FieldDecomposer later splits into the five fields
2. Direct-field providers (Groq vision) return the five fields in one call

Both return an ExtractedRecord tagged with its kind. Every provider or
transport failure is converted to ExtractionError / FieldDecompositionError
here so callers never see httpx, openai or image-library exceptions.
"""

import base64
import binascii
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import cv2
import httpx
from openai import OpenAI, OpenAIError
from PIL import Image

from .ocr import OCRService
from .preprocessing import ImagePreprocessor
from ..config import Settings, get_settings
from ..exceptions import ExtractionError, FieldDecompositionError, InvalidInputError

logger = logging.getLogger(__name__)


# Keys used by the LLM prompts, mapped to LabelFields attributes
FIELD_KEYS = {
    "brandName": "brand_name",
    "classType": "class_type",
    "alcoholContent": "alcohol_content",
    "netContents": "net_contents",
    "governmentWarning": "government_warning",
}

FIELD_DECOMPOSITION_PROMPT = """\
You are an OCR text extraction specialist. Extract specific fields from the OCR text.

Find and return the EXACT text for each field. Do not interpret or normalize - return exactly what you see.
IMPORTANT: Do not include markdown formatting (like # or *) in your extracted values - return only the plain text.

Return ONLY this JSON:
{
  "brandName": "<exact text found or empty string>",
  "classType": "<exact text found or empty string>",
  "alcoholContent": "<exact text found or empty string>",
  "netContents": "<exact text found or empty string>",
  "governmentWarning": "<exact text found or empty string>"
}"""

VISION_EXTRACTION_PROMPT = """\
You are an expert alcohol label reader. Look at this label image and read the
five regulated fields exactly as printed.

Rules:
- Copy text exactly as it appears, preserving case and punctuation.
- Government warning: copy the complete statement, including the
  "GOVERNMENT WARNING:" prefix exactly as printed.
- Use an empty string for any field you cannot find.

Return ONLY this JSON:
{
  "brandName": { "detected": "<text or empty>", "confidence": 0.0-1.0, "notes": "<brief note>" },
  "classType": { "detected": "<text or empty>", "confidence": 0.0-1.0, "notes": "<brief note>" },
  "alcoholContent": { "detected": "<text or empty>", "confidence": 0.0-1.0, "notes": "<brief note>" },
  "netContents": { "detected": "<text or empty>", "confidence": 0.0-1.0, "notes": "<brief note>" },
  "governmentWarning": { "detected": "<text or empty>", "confidence": 0.0-1.0, "notes": "<brief note>" }
}"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_MARKDOWN_PREFIX = re.compile(r"^[#*]+\s*")
_NOT_FOUND = "not found"


@dataclass(frozen=True)
class LabelFields:
    """The five regulated label fields, as submitted or as read from a label."""
    brand_name: str = ""
    class_type: str = ""
    alcohol_content: str = ""
    net_contents: str = ""
    government_warning: str = ""


@dataclass(frozen=True)
class LabelImage:
    """Opaque image bytes plus declared content type."""
    data: bytes
    content_type: str = "image/jpeg"
    filename: Optional[str] = None

    @classmethod
    def from_base64(
        cls,
        encoded: str,
        content_type: str = "image/jpeg",
        filename: Optional[str] = None,
    ) -> "LabelImage":
        """Decode a base64 payload (with or without a data: URI prefix)."""
        if encoded.startswith("data:") and "," in encoded:
            encoded = encoded.split(",", 1)[1]
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidInputError(f"Image is not valid base64: {e}") from e
        if not data:
            raise InvalidInputError("Image payload is empty")
        return cls(data=data, content_type=content_type, filename=filename)

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_uri(self) -> str:
        return f"data:{self.content_type};base64,{self.base64}"


class ExtractionKind(str, Enum):
    """Which shape of result a provider produced."""
    RAW_TEXT = "raw_text"
    FIELDS = "fields"


@dataclass(frozen=True)
class ExtractedRecord:
    """
    Provider output, tagged by kind.

    RAW_TEXT records carry only raw_text; FIELDS records carry the five raw
    field strings and may carry the provider's own per-field confidence and
    notes (advisory only).
    """
    kind: ExtractionKind
    raw_text: str = ""
    fields: Optional[LabelFields] = None
    field_confidence: Dict[str, float] = field(default_factory=dict)
    field_notes: Dict[str, str] = field(default_factory=dict)
    provider: str = ""

    @classmethod
    def from_text(cls, text: str, provider: str = "") -> "ExtractedRecord":
        return cls(kind=ExtractionKind.RAW_TEXT, raw_text=text, provider=provider)

    @classmethod
    def from_fields(
        cls,
        fields: LabelFields,
        provider: str = "",
        raw_text: str = "",
        confidence: Optional[Dict[str, float]] = None,
        notes: Optional[Dict[str, str]] = None,
    ) -> "ExtractedRecord":
        return cls(
            kind=ExtractionKind.FIELDS,
            raw_text=raw_text,
            fields=fields,
            field_confidence=confidence or {},
            field_notes=notes or {},
            provider=provider,
        )


# =============================================================================
# PAYLOAD HELPERS
# =============================================================================

def parse_json_object(content: str) -> Dict[str, Any]:
    """
    Pull the first {...} block out of a model reply and parse it.

    Raises:
        ValueError: if no JSON object is present or it does not parse
    """
    match = _JSON_OBJECT.search(content)
    if not match:
        raise ValueError("No JSON found in response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


def clean_value(value: Any) -> str:
    """Strip markdown artifacts and "NOT FOUND" placeholders from an extracted value."""
    if value is None:
        return ""
    text = _MARKDOWN_PREFIX.sub("", str(value)).strip()
    if text.lower() == _NOT_FOUND:
        return ""
    return text


def fields_from_payload(data: Dict[str, Any]) -> LabelFields:
    """Build LabelFields from {"brandName": "...", ...}; missing keys become empty."""
    values = {}
    for key, attr in FIELD_KEYS.items():
        raw = data.get(key)
        if isinstance(raw, dict):
            raw = raw.get("detected")
        values[attr] = clean_value(raw)
    return LabelFields(**values)


def _clamp_confidence(value: Any) -> Optional[float]:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return min(1.0, max(0.0, score))


# =============================================================================
# INTERFACES
# =============================================================================

class ExtractionAdapter(ABC):
    """Turns a label image into an ExtractedRecord."""

    name = "base"

    @property
    def is_ready(self) -> bool:
        """Whether the provider can accept requests (credentials, engine loaded)."""
        return True

    def initialize(self) -> bool:
        """Warm up the provider. Safe to call repeatedly."""
        return self.is_ready

    @abstractmethod
    def extract(self, image: LabelImage) -> ExtractedRecord:
        """
        Extract text or fields from a label image.

        Raises:
            ExtractionError: on any provider, transport or payload failure
        """


class FieldDecomposer(ABC):
    """Splits raw label text into the five raw field strings."""

    name = "base"

    @abstractmethod
    def decompose(self, raw_text: str) -> LabelFields:
        """
        Raises:
            FieldDecompositionError: when the text cannot be split
        """


# =============================================================================
# TEXT PROVIDERS
# =============================================================================

class MistralOCRProvider(ExtractionAdapter):
    """Mistral OCR API: image in, page markdown out."""

    name = "mistral"

    def __init__(
        self,
        api_key: Optional[str],
        url: str = "https://api.mistral.ai/v1/ocr",
        model: str = "mistral-ocr-latest",
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.model = model
        self.timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "MistralOCRProvider":
        return cls(
            api_key=settings.mistral_api_key,
            url=settings.mistral_ocr_url,
            model=settings.mistral_ocr_model,
            timeout=settings.provider_timeout_seconds,
        )

    @property
    def is_ready(self) -> bool:
        return bool(self.api_key)

    def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._http_client is not None:
            return self._http_client.post(self.url, json=payload, headers=headers)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.url, json=payload, headers=headers)

    def extract(self, image: LabelImage) -> ExtractedRecord:
        if not self.api_key:
            raise ExtractionError("MISTRAL_API_KEY not configured")

        payload = {
            "model": self.model,
            "document": {"type": "image_url", "image_url": image.data_uri},
        }

        try:
            response = self._post(payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Mistral OCR timed out after {self.timeout}s")
            raise ExtractionError(f"OCR request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Mistral OCR request failed: {e}")
            raise ExtractionError(f"OCR request failed: {e}") from e

        if response.is_error:
            logger.warning(f"Mistral OCR returned HTTP {response.status_code}")
            raise ExtractionError(
                f"Mistral API error: {response.status_code} - {response.text}",
                details={"status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ExtractionError("Mistral OCR returned an unparseable payload") from e

        pages = data.get("pages") if isinstance(data, dict) else None
        if not isinstance(pages, list):
            raise ExtractionError("Mistral OCR returned an unparseable payload")

        page_texts = []
        for page in pages:
            markdown = page.get("markdown") if isinstance(page, dict) else None
            if markdown is None:
                continue
            if not isinstance(markdown, str):
                raise ExtractionError("Mistral OCR returned an unparseable payload")
            page_texts.append(markdown)

        text = "\n\n".join(page_texts)
        if not text.strip():
            raise ExtractionError("Mistral OCR returned no text")

        logger.info(f"Mistral OCR extracted {len(text)} characters from {len(pages)} page(s)")
        return ExtractedRecord.from_text(text, provider=self.name)


class EasyOCRProvider(ExtractionAdapter):
    """Local EasyOCR engine with OpenCV preprocessing."""

    name = "easyocr"

    def __init__(
        self,
        ocr_service: Optional[OCRService] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
    ):
        self.ocr_service = ocr_service or OCRService()
        self.preprocessor = preprocessor or ImagePreprocessor()

    @property
    def is_ready(self) -> bool:
        return self.ocr_service.is_ready

    def initialize(self) -> bool:
        return self.ocr_service.initialize()

    def extract(self, image: LabelImage) -> ExtractedRecord:
        if not self.ocr_service.is_ready and not self.ocr_service.initialize():
            raise ExtractionError("Local OCR engine is not available")

        try:
            processed_image, preprocessing_meta = self.preprocessor.preprocess(image.data)
        except (OSError, ValueError, Image.DecompressionBombError, cv2.error) as e:
            raise ExtractionError(f"Unable to read image: {e}") from e

        logger.info(f"Preprocessing steps: {preprocessing_meta['preprocessing_steps']}")
        result = self.ocr_service.process(processed_image)

        if not result.raw_text.strip():
            error_msg = (
                preprocessing_meta.get("quality_recommendation")
                or "Unable to extract text from image. Please upload a clearer label."
            )
            raise ExtractionError(error_msg)

        return ExtractedRecord.from_text(result.raw_text, provider=self.name)


# =============================================================================
# DIRECT-FIELD PROVIDER
# =============================================================================

class GroqVisionProvider(ExtractionAdapter):
    """Single vision-model call that reads all five fields from the image."""

    name = "groq_vision"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.groq.com/openai/v1",
        model: str = "meta-llama/llama-4-scout-17b-16e-instruct",
        timeout: float = 30.0,
        max_retries: int = 0,
        max_tokens: int = 1500,
        client: Optional[OpenAI] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_tokens = max_tokens
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "GroqVisionProvider":
        return cls(
            api_key=settings.groq_api_key,
            base_url=settings.groq_base_url,
            model=settings.groq_vision_model,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
            max_tokens=settings.llm_max_tokens,
        )

    @property
    def is_ready(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise ExtractionError("GROQ_API_KEY not configured")
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    def extract(self, image: LabelImage) -> ExtractedRecord:
        client = self._get_client()

        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": VISION_EXTRACTION_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": "Read the five label fields. Return JSON only."},
                            {"type": "image_url", "image_url": {"url": image.data_uri}},
                        ],
                    },
                ],
                temperature=0,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            logger.warning(f"Groq vision request failed: {e}")
            raise ExtractionError(f"Vision extraction failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExtractionError("Empty response from Groq Vision")

        try:
            data = parse_json_object(content)
        except ValueError as e:
            raise ExtractionError(f"Unparseable response from Groq Vision: {e}") from e

        confidence: Dict[str, float] = {}
        notes: Dict[str, str] = {}
        for key, attr in FIELD_KEYS.items():
            entry = data.get(key)
            if not isinstance(entry, dict):
                continue
            score = _clamp_confidence(entry.get("confidence"))
            if score is not None:
                confidence[attr] = score
            if entry.get("notes"):
                notes[attr] = str(entry["notes"])

        return ExtractedRecord.from_fields(
            fields_from_payload(data),
            provider=self.name,
            raw_text=content,
            confidence=confidence,
            notes=notes,
        )


# =============================================================================
# FIELD DECOMPOSITION
# =============================================================================

class LLMFieldDecomposer(FieldDecomposer):
    """Splits OCR text into fields with an OpenAI-compatible chat model (Groq or OpenRouter)."""

    def __init__(
        self,
        provider: str,
        api_key: Optional[str],
        base_url: str,
        model: str,
        timeout: float = 30.0,
        max_retries: int = 0,
        max_tokens: int = 1500,
        client: Optional[OpenAI] = None,
    ):
        self.name = provider
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_tokens = max_tokens
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMFieldDecomposer":
        if settings.llm_provider == "openrouter":
            api_key, base_url, model = (
                settings.openrouter_api_key,
                settings.openrouter_base_url,
                settings.openrouter_model,
            )
        else:
            api_key, base_url, model = (
                settings.groq_api_key,
                settings.groq_base_url,
                settings.groq_text_model,
            )
        return cls(
            provider=settings.llm_provider,
            api_key=api_key,
            base_url=base_url,
            model=model,
            timeout=settings.provider_timeout_seconds,
            max_retries=settings.provider_max_retries,
            max_tokens=settings.llm_max_tokens,
        )

    @property
    def display_name(self) -> str:
        return "OpenRouter" if self.name == "openrouter" else "Groq"

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise FieldDecompositionError(f"{self.name.upper()}_API_KEY not configured")
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._client

    def decompose(self, raw_text: str) -> LabelFields:
        if not raw_text or not raw_text.strip():
            raise FieldDecompositionError("No label text to decompose")

        client = self._get_client()
        user_prompt = (
            f"OCR TEXT:\n{raw_text}\n\n"
            "Extract the brand name, class/type, alcohol content, net contents, "
            "and government warning from this text."
        )

        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": FIELD_DECOMPOSITION_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            logger.warning(f"{self.display_name} extraction request failed: {e}")
            raise FieldDecompositionError(f"{self.display_name} extraction failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise FieldDecompositionError(f"Empty response from {self.display_name}")

        try:
            data = parse_json_object(content)
        except ValueError as e:
            raise FieldDecompositionError(f"{e} ({self.display_name})") from e

        return fields_from_payload(data)


# =============================================================================
# FACTORIES
# =============================================================================

def build_extraction_adapter(settings: Optional[Settings] = None) -> ExtractionAdapter:
    """Pick the configured extraction provider."""
    settings = settings or get_settings()
    if settings.extraction_provider == "groq_vision":
        return GroqVisionProvider.from_settings(settings)
    if settings.extraction_provider == "easyocr":
        return EasyOCRProvider()
    return MistralOCRProvider.from_settings(settings)


def build_field_decomposer(settings: Optional[Settings] = None) -> FieldDecomposer:
    """Pick the configured LLM for splitting raw text into fields."""
    return LLMFieldDecomposer.from_settings(settings or get_settings())
