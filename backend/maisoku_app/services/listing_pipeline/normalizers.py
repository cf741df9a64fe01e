"""
Field normalizers.

Convert heterogeneous raw extraction output into schema-typed values.
Each value kind has a dedicated function; fields whose kind has none
(select fields) pass through unchanged.
"""

import logging
import math
import re
from typing import Any, Callable, Dict, List, Optional

from .evidence import (
    Evidence,
    EvidenceScoredField,
    PropertyListing,
    clamp_confidence,
    page_fallback_snippet,
    truncate_snippet,
)
from .schema import SCHEMA, ListingSchema, ValueKind

logger = logging.getLogger(__name__)

_NON_DIGIT = re.compile(r'\D')
_NON_DECIMAL = re.compile(r'[^\d.]')


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """
    Strip every non-digit character and parse as an integer.

    "120,000円" -> 120000, "徒歩5分" -> 5. Numbers pass through.
    """
    if _is_number(value):
        if isinstance(value, float) and not math.isfinite(value):
            return default
        return int(value)
    if isinstance(value, str):
        digits = _NON_DIGIT.sub('', value)
        if not digits:
            return default
        try:
            return int(digits)
        except ValueError:
            return default
    return default


def parse_decimal(value: Any, default: Optional[float] = None) -> Optional[float]:
    """
    Keep digits and the decimal point, then parse as a float.

    "25.5㎡" -> 25.5, "1ヶ月" -> 1.0. Numbers pass through.
    """
    if _is_number(value):
        value = float(value)
        return value if math.isfinite(value) else default
    if isinstance(value, str):
        cleaned = _NON_DECIMAL.sub('', value)
        if not cleaned:
            return default
        try:
            return float(cleaned)
        except ValueError:
            return default
    return default


def normalize_int(value: Any) -> Optional[int]:
    return parse_int(value, default=None)


def normalize_int_zero(value: Any) -> int:
    return parse_int(value, default=0)


def normalize_float(value: Any) -> Optional[float]:
    return parse_decimal(value, default=None)


def normalize_float_zero(value: Any) -> float:
    return parse_decimal(value, default=0.0)


def normalize_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip()
    return None


def normalize_tags(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [value]
    return []


NORMALIZERS: Dict[ValueKind, Callable[[Any], Any]] = {
    ValueKind.INT: normalize_int,
    ValueKind.INT_ZERO: normalize_int_zero,
    ValueKind.FLOAT: normalize_float,
    ValueKind.FLOAT_ZERO: normalize_float_zero,
    ValueKind.STR: normalize_string,
    ValueKind.PHONE: normalize_string,
    ValueKind.TAGS: normalize_tags,
}


def get_normalizer(key: str, schema: ListingSchema = SCHEMA) -> Optional[Callable[[Any], Any]]:
    """Return the normalizer for a field key, or None for pass-through fields."""
    spec = schema.get(key)
    if spec is None:
        return None
    return NORMALIZERS.get(spec.kind)


def normalize_value(key: str, value: Any, schema: ListingSchema = SCHEMA) -> Any:
    normalizer = get_normalizer(key, schema)
    return normalizer(value) if normalizer else value


def normalize_field(
    key: str,
    raw_field: Dict[str, Any],
    page_index: int,
    schema: ListingSchema = SCHEMA
) -> EvidenceScoredField:
    """
    Normalize one `{value, confidence, evidence}` object from the service.

    A value that normalizes to None keeps confidence 0.0.
    """
    value = normalize_value(key, raw_field.get('value'), schema)
    confidence = clamp_confidence(raw_field.get('confidence'))
    if value is None:
        confidence = 0.0

    raw_evidence = raw_field.get('evidence')
    if isinstance(raw_evidence, dict):
        raw_evidence = raw_evidence.get('snippet')
    if isinstance(raw_evidence, str):
        snippet = truncate_snippet(raw_evidence)
    else:
        snippet = page_fallback_snippet(page_index)

    return EvidenceScoredField(
        value=value,
        confidence=confidence,
        evidence=Evidence(page_index=page_index, snippet=snippet)
    )


def ensure_required_fields(
    listing: PropertyListing,
    page_index: int,
    schema: ListingSchema = SCHEMA
) -> PropertyListing:
    """Add a not-found field for every required key missing from the listing."""
    for key in schema.required_keys:
        if key not in listing:
            listing[key] = EvidenceScoredField.not_found(page_index)
    return listing


def normalize_extracted_data(
    raw_data: Dict[str, Any],
    page_index: int,
    schema: ListingSchema = SCHEMA
) -> PropertyListing:
    """
    Normalize a full schema-shaped response into a PropertyListing.

    Entries that are not `{value, ...}` objects are skipped. Keys may be
    snake_case keys or destination property names; unknown keys are kept
    as pass-through fields.
    """
    normalized: PropertyListing = {}

    for raw_key, raw_field in raw_data.items():
        if not isinstance(raw_field, dict) or 'value' not in raw_field:
            logger.debug(f"Skipping malformed field '{raw_key}'")
            continue
        key = schema.resolve_key(raw_key) or raw_key
        normalized[key] = normalize_field(key, raw_field, page_index, schema)

    return ensure_required_fields(normalized, page_index, schema)
