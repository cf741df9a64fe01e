"""Tests for field normalization."""
import math

import pytest

from maisoku_app.services.listing_pipeline.normalizers import (
    ensure_required_fields,
    get_normalizer,
    normalize_extracted_data,
    normalize_field,
    normalize_float,
    normalize_float_zero,
    normalize_int,
    normalize_int_zero,
    normalize_string,
    normalize_tags,
)
from maisoku_app.services.listing_pipeline.schema import SCHEMA


class TestNumericNormalizers:

    @pytest.mark.parametrize("raw, expected", [
        ("120,000円", 120000),
        ("1,234,567円", 1234567),
        ("¥85,000", 85000),
        ("徒歩5分", 5),
        (98000, 98000),
        (98000.0, 98000),
    ])
    def test_int_strips_non_digits(self, raw, expected):
        assert normalize_int(raw) == expected

    @pytest.mark.parametrize("raw", ["なし", "", None, [], True, math.nan])
    def test_int_unparseable_is_null(self, raw):
        assert normalize_int(raw) is None

    def test_int_zero_default(self):
        assert normalize_int_zero("なし") == 0
        assert normalize_int_zero(None) == 0
        assert normalize_int_zero("12,000円") == 12000

    @pytest.mark.parametrize("raw, expected", [
        ("25.5㎡", 25.5),
        ("30㎡", 30.0),
        ("1ヶ月", 1.0),
        (2, 2.0),
    ])
    def test_float_keeps_decimal_point(self, raw, expected):
        assert normalize_float(raw) == pytest.approx(expected)

    def test_float_unparseable(self):
        assert normalize_float("不明") is None
        assert normalize_float("..") is None
        assert normalize_float_zero("なし") == 0.0


class TestOtherNormalizers:

    def test_string_trimmed(self):
        assert normalize_string("  東京都港区  ") == "東京都港区"

    def test_non_string_is_null(self):
        assert normalize_string(123) is None
        assert normalize_string(None) is None

    def test_tags(self):
        assert normalize_tags(["エアコン", "オートロック"]) == ["エアコン", "オートロック"]
        assert normalize_tags("エアコン") == ["エアコン"]
        assert normalize_tags(None) == []
        assert normalize_tags(5) == []

    def test_select_fields_pass_through(self):
        assert get_normalizer('floor_plan') is None
        assert get_normalizer('unknown_field') is None
        assert get_normalizer('rent') is normalize_int


class TestNormalizeField:

    def test_missing_evidence_gets_page_fallback(self):
        scored = normalize_field('rent', {'value': '120,000円', 'confidence': 0.95}, page_index=1)
        assert scored.value == 120000
        assert scored.evidence.snippet == "extracted from page 2"
        assert scored.evidence.page_index == 1

    def test_confidence_clamped(self):
        scored = normalize_field('address', {'value': 'x', 'confidence': 7}, 0)
        assert scored.confidence == 1.0
        scored = normalize_field('address', {'value': 'x'}, 0)
        assert scored.confidence == 0.0

    def test_null_value_never_keeps_confidence(self):
        scored = normalize_field('rent', {'value': '応相談', 'confidence': 0.9}, 0)
        assert scored.value is None
        assert scored.confidence == 0.0

    def test_evidence_snippet_truncated(self):
        scored = normalize_field('address', {'value': 'x', 'confidence': 1, 'evidence': 'a' * 300}, 0)
        assert len(scored.evidence.snippet) == 150


class TestNormalizeExtractedData:

    def test_all_required_fields_present(self):
        listing = normalize_extracted_data({'rent': {'value': 100000, 'confidence': 0.9}}, 0)
        for key in SCHEMA.required_keys:
            assert key in listing
        assert listing['address'].value is None
        assert listing['address'].confidence == 0.0

    def test_destination_names_resolved(self):
        listing = normalize_extracted_data({'賃料': {'value': '80,000円', 'confidence': 0.8}}, 0)
        assert listing['rent'].value == 80000

    def test_malformed_entries_skipped(self):
        listing = normalize_extracted_data({'rent': 120000, 'address': {'confidence': 1}}, 0)
        assert listing['rent'].value is None
        assert listing['address'].value is None

    def test_ensure_required_keeps_existing(self):
        listing = normalize_extracted_data({'property_name': {'value': 'A', 'confidence': 1}}, 0)
        before = listing['property_name']
        ensure_required_fields(listing, 0)
        assert listing['property_name'] is before
