"""Tests for page image classification."""
import pytest

from maisoku_app.services.listing_pipeline.image_classifier import (
    FAILED_CLASSIFICATION_CONFIDENCE,
    ImageClassifier,
    LLMVisionClassifier,
    validate_classification,
)
from maisoku_app.services.listing_pipeline.llm_client import ExtractionServiceError
from maisoku_app.services.listing_pipeline.schema import ImageType

from conftest import FakeVisionService


class TestValidateClassification:

    def test_valid_label_passes_through(self):
        result = validate_classification({'type': 'floorplan', 'confidence': 0.92, 'reasoning': '線画'})
        assert result.image_type == ImageType.FLOORPLAN
        assert result.confidence == pytest.approx(0.92)
        assert result.reasoning == '線画'
        assert not result.failed

    def test_out_of_set_label_becomes_other_keeping_confidence(self):
        result = validate_classification({'type': 'balcony', 'confidence': 0.8})
        assert result.image_type == ImageType.OTHER
        assert result.confidence == pytest.approx(0.8)

    def test_missing_confidence_is_zero(self):
        result = validate_classification({'type': 'map'})
        assert result.image_type == ImageType.MAP
        assert result.confidence == 0.0

    @pytest.mark.parametrize("raw, expected", [(1.7, 1.0), (-0.2, 0.0), ("0.5", 0.5), ("high", 0.0)])
    def test_confidence_clamped(self, raw, expected):
        assert validate_classification({'type': 'view', 'confidence': raw}).confidence == expected

    def test_label_must_be_a_string(self):
        assert validate_classification({'type': ['bath']}).image_type == ImageType.OTHER


class TestImageClassifier:

    def test_service_failure_uses_fixed_low_confidence(self):
        classifier = ImageClassifier(FakeVisionService(error=ExtractionServiceError("down")))
        result = classifier.classify_base64("QUJD")
        assert result.image_type == ImageType.OTHER
        assert result.confidence == FAILED_CLASSIFICATION_CONFIDENCE
        assert result.failed

    def test_non_object_answer_is_a_failure(self):
        result = ImageClassifier(FakeVisionService(responses=["kitchen"])).classify_base64("QUJD")
        assert result.failed
        assert result.confidence == FAILED_CLASSIFICATION_CONFIDENCE

    def test_no_service_configured(self):
        result = ImageClassifier(None).classify_bytes(b"png")
        assert result.image_type == ImageType.OTHER
        assert result.failed

    def test_classify_page_wraps_result(self):
        service = FakeVisionService(responses=[{'type': 'exterior', 'confidence': 0.88}])
        image = ImageClassifier(service).classify_page(
            b"png", "img_1", "memory://s/images/a_page_1.png", 0, file_id="f1"
        )
        assert image.type == ImageType.EXTERIOR
        assert image.confidence == pytest.approx(0.88)
        assert image.to_dict() == {
            'id': "img_1",
            'url': "memory://s/images/a_page_1.png",
            'page_index': 0,
            'type': "exterior",
            'confidence': pytest.approx(0.88),
            'file_id': "f1",
        }


class FakeClient:

    def __init__(self, answer):
        self.answer = answer
        self.calls = []

    def complete(self, prompt, max_tokens, image_base64=None, media_type="image/png", service="extraction"):
        self.calls.append({'image_base64': image_base64, 'service': service, 'max_tokens': max_tokens})
        return self.answer


class TestLLMVisionClassifier:

    def test_sends_image_to_vision_service(self):
        client = FakeClient('```json\n{"type": "kitchen", "confidence": 0.7}\n```')
        raw = LLMVisionClassifier(client).classify("QUJD")
        assert raw == {"type": "kitchen", "confidence": 0.7}
        assert client.calls == [{'image_base64': "QUJD", 'service': "vision", 'max_tokens': 1000}]
