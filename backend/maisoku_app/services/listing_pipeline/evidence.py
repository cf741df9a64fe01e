"""
Evidence-scored field values.

Every extracted value travels with a confidence in [0, 1] and the page
index + source snippet that supports it.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

MAX_SNIPPET_CHARS = 150

# Fixed confidence for values recovered by regex fallback
PATTERN_FALLBACK_CONFIDENCE = 0.3


def clamp_confidence(raw: Any) -> float:
    """
    Clamp an arbitrary upstream confidence into [0, 1].

    None, NaN, non-numeric values and booleans all map to 0.0.
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


def truncate_snippet(snippet: str) -> str:
    return snippet[:MAX_SNIPPET_CHARS]


def page_fallback_snippet(page_index: int) -> str:
    """Synthetic evidence when the service gives none (pages are 1-based for humans)."""
    return f"extracted from page {page_index + 1}"


def not_found_snippet(page_index: int) -> str:
    return f"not found on page {page_index + 1}"


@dataclass(frozen=True)
class Evidence:
    """Where a value came from."""
    page_index: int
    snippet: str

    def __post_init__(self):
        if self.page_index < 0:
            raise ValueError(f"page_index must be >= 0, got {self.page_index}")
        if len(self.snippet) > MAX_SNIPPET_CHARS:
            object.__setattr__(self, 'snippet', truncate_snippet(self.snippet))

    def to_dict(self) -> Dict[str, Any]:
        return {'page_index': self.page_index, 'snippet': self.snippet}


@dataclass(frozen=True)
class EvidenceScoredField:
    """
    A single extracted value with confidence and evidence.

    Confidence is clamped on construction. A None value never carries
    more confidence than it was given: normalization must not upgrade it.
    """
    value: Any
    confidence: float
    evidence: Evidence = field(default_factory=lambda: Evidence(0, ""))

    def __post_init__(self):
        object.__setattr__(self, 'confidence', clamp_confidence(self.confidence))

    @property
    def is_found(self) -> bool:
        return self.value is not None

    @classmethod
    def not_found(cls, page_index: int, snippet: Optional[str] = None) -> 'EvidenceScoredField':
        return cls(
            value=None,
            confidence=0.0,
            evidence=Evidence(page_index, snippet or not_found_snippet(page_index))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'value': self.value,
            'confidence': self.confidence,
            'evidence': self.evidence.to_dict()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EvidenceScoredField':
        evidence = data.get('evidence') or {}
        if isinstance(evidence, str):
            # extraction services send the snippet alone
            evidence = {'snippet': evidence}
        elif not isinstance(evidence, dict):
            evidence = {}
        return cls(
            value=data.get('value'),
            confidence=data.get('confidence', 0.0),
            evidence=Evidence(
                page_index=int(evidence.get('page_index', evidence.get('pageIndex', 0)) or 0),
                snippet=str(evidence.get('snippet', ''))
            )
        )


# A listing maps schema keys to evidence-scored fields
PropertyListing = Dict[str, EvidenceScoredField]


def listing_to_dict(listing: PropertyListing) -> Dict[str, Dict[str, Any]]:
    return {key: f.to_dict() for key, f in listing.items()}


def listing_from_dict(data: Dict[str, Any]) -> PropertyListing:
    return {
        key: EvidenceScoredField.from_dict(value)
        for key, value in data.items()
        if isinstance(value, dict)
    }


def average_confidence(listing: PropertyListing) -> float:
    if not listing:
        return 0.0
    return sum(f.confidence for f in listing.values()) / len(listing)
