"""
Shared fixtures: fake external services, sample flyer text, a pipeline
wired to in-memory collaborators.
"""
import pytest

from maisoku_app.services.listing_pipeline.extraction import ExtractionService
from maisoku_app.services.listing_pipeline.image_classifier import VisionClassificationService
from maisoku_app.services.listing_pipeline.pipeline import ListingPipeline
from maisoku_app.services.listing_pipeline.progress import ProgressChannel
from maisoku_app.services.object_store import InMemoryObjectStore
from maisoku_app.utils.rate_limiter import RateLimiter


PARK_MANSION_TEXT = """賃貸物件詳細資料

物件名: パークマンション青山
所在地: 東京都港区青山1-2-3
賃料: 120,000円
管理費・共益費: 12,000円
間取り: 1LDK
専有面積: 25.5㎡
築年数: 築12年
"""

RESIDENCE_SHINJUKU_TEXT = """物件名: レジデンス新宿
所在地: 東京都新宿区西新宿4-5-6
賃料: 95,000円
間取り: 1K
"""

PARK_MANSION_EN_TEXT = """Property Name: Park Mansion Aoyama
Address: 東京都港区青山
Rent: ¥120,000
"""

NO_LISTING_TEXT = """会社概要
株式会社プロパティマネジメント
営業時間 10:00-18:00 定休日 水曜日
"""


class FakeExtractionService(ExtractionService):
    """Returns a canned response, or raises the given exception."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def extract(self, text, page_index):
        self.calls.append((text, page_index))
        if self.error is not None:
            raise self.error
        return self.response


class FakeVisionService(VisionClassificationService):
    """Returns canned answers in order (the last one repeats), or raises."""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.calls = 0

    def classify(self, image_base64):
        self.calls += 1
        if self.error is not None:
            raise self.error
        index = min(self.calls - 1, len(self.responses) - 1)
        return self.responses[index]


def service_response(**fields):
    """Build a `{key: {value, confidence, evidence}}` service answer."""
    return {
        key: {'value': value, 'confidence': 0.9, 'evidence': f"{key}: {value}"}
        for key, value in fields.items()
    }


@pytest.fixture
def park_mansion_text():
    return PARK_MANSION_TEXT


@pytest.fixture
def park_mansion_en_text():
    return PARK_MANSION_EN_TEXT


@pytest.fixture
def residence_text():
    return RESIDENCE_SHINJUKU_TEXT


@pytest.fixture
def no_listing_text():
    return NO_LISTING_TEXT


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def progress_channel():
    return ProgressChannel()


@pytest.fixture
def rate_limiter():
    return RateLimiter(max_total_calls=1000, min_delay_seconds=0, enabled=False)


@pytest.fixture
def make_pipeline(object_store, progress_channel, rate_limiter):
    """Factory for pipelines with no network and no inter-call delay."""

    def _make(extraction_service=None, classification_service=None, **kwargs):
        kwargs.setdefault('object_store', object_store)
        kwargs.setdefault('progress', progress_channel)
        kwargs.setdefault('rate_limiter', rate_limiter)
        kwargs.setdefault('inter_call_delay', 0)
        kwargs.setdefault('max_file_concurrency', 2)
        return ListingPipeline(
            extraction_service=extraction_service,
            classification_service=classification_service,
            **kwargs
        )

    return _make
