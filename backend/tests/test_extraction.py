"""Tests for extraction adapters and field decomposition."""

import json
from unittest.mock import MagicMock

import cv2
import httpx
import openai
import pytest
from PIL import Image

from label_verifier.exceptions import ErrorKind, ExtractionError, FieldDecompositionError, InvalidInputError
from label_verifier.services.extraction import (
    EasyOCRProvider,
    ExtractionKind,
    GroqVisionProvider,
    LabelFields,
    LabelImage,
    LLMFieldDecomposer,
    MistralOCRProvider,
    clean_value,
    fields_from_payload,
    parse_json_object,
)
from label_verifier.services.ocr import OCRResult


@pytest.fixture
def label_image():
    """Small fake JPEG payload."""
    return LabelImage(data=b"\xff\xd8\xff\xe0fake-jpeg", content_type="image/jpeg")


def chat_response(content):
    """Build an object shaped like an openai chat completion."""
    message = MagicMock()
    message.content = content
    choice = MagicMock()
    choice.message = message
    response = MagicMock()
    response.choices = [choice]
    return response


def chat_client(content=None, side_effect=None):
    """Mock openai client whose chat.completions.create returns content."""
    client = MagicMock()
    if side_effect is not None:
        client.chat.completions.create.side_effect = side_effect
    else:
        client.chat.completions.create.return_value = chat_response(content)
    return client


def mistral_provider(handler):
    """MistralOCRProvider backed by an httpx mock transport."""
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return MistralOCRProvider(api_key="test-key", http_client=http_client)


class TestLabelImage:
    """Test LabelImage decoding."""

    def test_from_base64(self):
        image = LabelImage.from_base64("aGVsbG8=", content_type="image/png")
        assert image.data == b"hello"
        assert image.content_type == "image/png"

    def test_from_data_uri(self):
        image = LabelImage.from_base64("data:image/png;base64,aGVsbG8=")
        assert image.data == b"hello"

    def test_data_uri_round_trip(self):
        image = LabelImage(data=b"hello", content_type="image/webp")
        assert image.data_uri == "data:image/webp;base64,aGVsbG8="

    def test_invalid_base64(self):
        with pytest.raises(InvalidInputError) as exc_info:
            LabelImage.from_base64("not base64!!")
        assert exc_info.value.code == ErrorKind.INVALID_INPUT

    def test_empty_payload(self):
        with pytest.raises(InvalidInputError):
            LabelImage.from_base64("")


class TestPayloadHelpers:
    """Test JSON and value cleanup helpers."""

    def test_parse_json_with_surrounding_text(self):
        data = parse_json_object('Here you go:\n```json\n{"brandName": "OLD TOM"}\n```')
        assert data == {"brandName": "OLD TOM"}

    def test_parse_json_missing(self):
        with pytest.raises(ValueError):
            parse_json_object("no json here")

    def test_parse_json_malformed(self):
        with pytest.raises(ValueError):
            parse_json_object('{"brandName": }')

    def test_clean_value_strips_markdown(self):
        assert clean_value("# OLD TOM DISTILLERY") == "OLD TOM DISTILLERY"
        assert clean_value("** 45% Alc./Vol.") == "45% Alc./Vol."

    def test_clean_value_not_found(self):
        assert clean_value("NOT FOUND") == ""
        assert clean_value(None) == ""

    def test_fields_from_flat_payload(self):
        fields = fields_from_payload({"brandName": "OLD TOM", "netContents": "750 mL"})
        assert fields == LabelFields(brand_name="OLD TOM", net_contents="750 mL")

    def test_fields_from_detected_payload(self):
        fields = fields_from_payload({"classType": {"detected": "Bourbon", "confidence": 0.9}})
        assert fields.class_type == "Bourbon"
        assert fields.brand_name == ""


class TestMistralOCRProvider:
    """Test the Mistral OCR text provider."""

    def test_joins_page_markdown(self, label_image):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            captured["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"pages": [{"markdown": "OLD TOM"}, {"markdown": "750 mL"}]})

        record = mistral_provider(handler).extract(label_image)

        assert record.kind == ExtractionKind.RAW_TEXT
        assert record.raw_text == "OLD TOM\n\n750 mL"
        assert record.provider == "mistral"
        assert captured["auth"] == "Bearer test-key"
        assert captured["body"]["model"] == "mistral-ocr-latest"
        assert captured["body"]["document"]["image_url"].startswith("data:image/jpeg;base64,")

    def test_http_error_status(self, label_image):
        provider = mistral_provider(lambda request: httpx.Response(401, text="Unauthorized"))

        with pytest.raises(ExtractionError) as exc_info:
            provider.extract(label_image)

        assert "401" in exc_info.value.message
        assert exc_info.value.details["status_code"] == 401

    def test_timeout(self, label_image):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ExtractionError, match="timed out"):
            mistral_provider(handler).extract(label_image)

    def test_connection_error(self, label_image):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExtractionError):
            mistral_provider(handler).extract(label_image)

    def test_empty_text(self, label_image):
        provider = mistral_provider(lambda request: httpx.Response(200, json={"pages": [{"markdown": "  "}]}))

        with pytest.raises(ExtractionError, match="no text"):
            provider.extract(label_image)

    def test_unparseable_payload(self, label_image):
        provider = mistral_provider(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ExtractionError):
            provider.extract(label_image)

    @pytest.mark.parametrize("payload", [
        {"pages": 5},
        {"pages": "OLD TOM"},
        {"pages": [{"markdown": 123}]},
        ["not", "an", "object"],
    ])
    def test_malformed_pages_rejected(self, label_image, payload):
        provider = mistral_provider(lambda request: httpx.Response(200, json=payload))

        with pytest.raises(ExtractionError, match="unparseable") as exc_info:
            provider.extract(label_image)

        assert exc_info.value.code == ErrorKind.EXTRACTION_FAILED

    def test_missing_api_key(self, label_image):
        provider = MistralOCRProvider(api_key=None)
        assert provider.is_ready is False

        with pytest.raises(ExtractionError, match="MISTRAL_API_KEY"):
            provider.extract(label_image)


class TestGroqVisionProvider:
    """Test the direct-field vision provider."""

    def test_returns_fields_with_advisory_confidence(self, label_image):
        content = json.dumps({
            "brandName": {"detected": "OLD TOM DISTILLERY", "confidence": 0.98, "notes": "top of label"},
            "classType": {"detected": "Kentucky Straight Bourbon Whiskey", "confidence": 1.7},
            "alcoholContent": {"detected": "45% Alc./Vol.", "confidence": "high"},
            "netContents": {"detected": "750 mL", "confidence": 0.9},
            "governmentWarning": {"detected": "", "confidence": 0.1, "notes": "not visible"},
        })
        client = chat_client(content)
        provider = GroqVisionProvider(api_key="test-key", client=client)

        record = provider.extract(label_image)

        assert record.kind == ExtractionKind.FIELDS
        assert record.fields.brand_name == "OLD TOM DISTILLERY"
        assert record.fields.government_warning == ""
        assert record.field_confidence["brand_name"] == 0.98
        assert record.field_confidence["class_type"] == 1.0
        assert "alcohol_content" not in record.field_confidence
        assert record.field_notes["government_warning"] == "not visible"

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0
        assert kwargs["response_format"] == {"type": "json_object"}
        image_part = kwargs["messages"][1]["content"][1]
        assert image_part["image_url"]["url"] == label_image.data_uri

    def test_api_error(self, label_image):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.groq.com"))
        provider = GroqVisionProvider(api_key="test-key", client=chat_client(side_effect=error))

        with pytest.raises(ExtractionError):
            provider.extract(label_image)

    def test_empty_content(self, label_image):
        provider = GroqVisionProvider(api_key="test-key", client=chat_client(""))

        with pytest.raises(ExtractionError, match="Empty response"):
            provider.extract(label_image)

    def test_non_json_content(self, label_image):
        provider = GroqVisionProvider(api_key="test-key", client=chat_client("I can't read this label"))

        with pytest.raises(ExtractionError):
            provider.extract(label_image)

    def test_missing_api_key(self, label_image):
        provider = GroqVisionProvider(api_key=None)
        assert provider.is_ready is False

        with pytest.raises(ExtractionError, match="GROQ_API_KEY"):
            provider.extract(label_image)


class TestLLMFieldDecomposer:
    """Test splitting OCR text into fields."""

    def test_decomposes_text(self):
        content = json.dumps({
            "brandName": "## OLD TOM DISTILLERY",
            "classType": "Kentucky Straight Bourbon Whiskey",
            "alcoholContent": "45% Alc./Vol.",
            "netContents": "750 mL",
            "governmentWarning": "NOT FOUND",
        })
        client = chat_client(content)
        decomposer = LLMFieldDecomposer("groq", "test-key", "https://api.groq.com/openai/v1", "m", client=client)

        fields = decomposer.decompose("OLD TOM DISTILLERY\n750 mL")

        assert fields.brand_name == "OLD TOM DISTILLERY"
        assert fields.net_contents == "750 mL"
        assert fields.government_warning == ""
        user_prompt = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert "OLD TOM DISTILLERY\n750 mL" in user_prompt

    def test_empty_text(self):
        decomposer = LLMFieldDecomposer("groq", "test-key", "https://x", "m", client=chat_client("{}"))

        with pytest.raises(FieldDecompositionError):
            decomposer.decompose("   ")

    def test_missing_api_key(self):
        decomposer = LLMFieldDecomposer("openrouter", None, "https://openrouter.ai/api/v1", "m")

        with pytest.raises(FieldDecompositionError, match="OPENROUTER_API_KEY"):
            decomposer.decompose("OLD TOM")

    def test_api_error_names_provider(self):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://openrouter.ai"))
        decomposer = LLMFieldDecomposer("openrouter", "k", "https://x", "m", client=chat_client(side_effect=error))

        with pytest.raises(FieldDecompositionError, match="OpenRouter") as exc_info:
            decomposer.decompose("OLD TOM")
        assert exc_info.value.code == ErrorKind.FIELD_DECOMPOSITION_FAILED

    def test_no_json(self):
        decomposer = LLMFieldDecomposer("groq", "k", "https://x", "m", client=chat_client("Sorry, no."))

        with pytest.raises(FieldDecompositionError, match="No JSON"):
            decomposer.decompose("OLD TOM")


class TestEasyOCRProvider:
    """Test the local OCR provider with a stubbed engine."""

    def test_returns_raw_text(self, label_image):
        ocr_service = MagicMock()
        ocr_service.is_ready = True
        ocr_service.process.return_value = OCRResult(boxes=[], raw_text="OLD TOM\n750 mL", average_confidence=0.9)
        preprocessor = MagicMock()
        preprocessor.preprocess.return_value = ("image", {"preprocessing_steps": ["grayscale"]})

        record = EasyOCRProvider(ocr_service=ocr_service, preprocessor=preprocessor).extract(label_image)

        assert record.kind == ExtractionKind.RAW_TEXT
        assert record.raw_text == "OLD TOM\n750 mL"
        assert record.provider == "easyocr"

    def test_engine_unavailable(self, label_image):
        ocr_service = MagicMock()
        ocr_service.is_ready = False
        ocr_service.initialize.return_value = False

        with pytest.raises(ExtractionError, match="not available"):
            EasyOCRProvider(ocr_service=ocr_service, preprocessor=MagicMock()).extract(label_image)

    def test_no_text_uses_quality_recommendation(self, label_image):
        ocr_service = MagicMock()
        ocr_service.is_ready = True
        ocr_service.process.return_value = OCRResult.empty()
        preprocessor = MagicMock()
        preprocessor.preprocess.return_value = (
            "image",
            {"preprocessing_steps": [], "quality_recommendation": "Image appears blurry."},
        )

        with pytest.raises(ExtractionError, match="blurry"):
            EasyOCRProvider(ocr_service=ocr_service, preprocessor=preprocessor).extract(label_image)

    def test_unreadable_image(self, label_image):
        ocr_service = MagicMock()
        ocr_service.is_ready = True
        preprocessor = MagicMock()
        preprocessor.preprocess.side_effect = OSError("cannot identify image file")

        with pytest.raises(ExtractionError, match="Unable to read image"):
            EasyOCRProvider(ocr_service=ocr_service, preprocessor=preprocessor).extract(label_image)

    @pytest.mark.parametrize("error", [
        Image.DecompressionBombError("Image size (400000000 pixels) exceeds limit"),
        cv2.error("OpenCV(4.9.0) error: (-215:Assertion failed) !_src.empty()"),
    ])
    def test_image_library_errors_become_extraction_errors(self, label_image, error):
        ocr_service = MagicMock()
        ocr_service.is_ready = True
        preprocessor = MagicMock()
        preprocessor.preprocess.side_effect = error

        with pytest.raises(ExtractionError, match="Unable to read image"):
            EasyOCRProvider(ocr_service=ocr_service, preprocessor=preprocessor).extract(label_image)

        ocr_service.process.assert_not_called()
