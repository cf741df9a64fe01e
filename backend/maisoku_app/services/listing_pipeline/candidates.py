"""
Listing Candidate Detection
===========================

Decides which pages of a document describe a property listing, and
derives the identity key used to merge sightings of the same listing.

Detection works over linear document text plus a page count:
1. Split the text into `page_count` equal-length slices
2. Test each slice against an ordered set of labeled patterns
3. A slice with at least one match becomes a candidate

Tradeoffs:
----------
1. Page boundaries are approximated by character offset:
   - The extracted text carries no page markers
   - Slices may cut a listing in two; a listing straddling a boundary can
     yield two partial candidates with different keys
   - Accepted approximation: the detection contract is defined over slices

2. Patterns are label-anchored ("物件名:", "賃料:"):
   - Free-form flyers without labels are missed
   - Mitigation: any single match is enough to create a candidate

No confidence is computed here. This stage decides existence and identity,
not quality.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

PREVIEW_TEXT_CHARS = 500
RENT_BAND_YEN = 10000

_KEY_STRIP = re.compile(r'[\s\-_]')


def normalize_key_part(text: str) -> str:
    """Strip whitespace, hyphens and underscores, then lower-case."""
    return _KEY_STRIP.sub('', text or '').lower()


def rent_band(rent: int, band: int = RENT_BAND_YEN) -> int:
    return (rent // band) * band


def make_dedup_key(name: str, address: str, rent: int) -> str:
    """
    Derive the dedup key for a listing sighting.

    Two candidates with equal keys are assumed to be the same listing.
    This is heuristic equality, not a guarantee.
    """
    return f"{normalize_key_part(name)}_{normalize_key_part(address)}_{rent_band(rent)}"


def split_pages(text: str, page_count: int) -> List[str]:
    """
    Split text into `page_count` slices of (roughly) equal length.

    Slice i covers [floor(i * L / n), floor((i + 1) * L / n)).
    """
    if page_count < 1:
        return []
    per_page = len(text) / page_count
    return [
        text[int(i * per_page):int((i + 1) * per_page)]
        for i in range(page_count)
    ]


def parse_rent(raw: Optional[str]) -> int:
    """Digit-strip and parse rent; never raises, 0 on failure."""
    digits = re.sub(r'\D', '', raw or '')
    try:
        return int(digits) if digits else 0
    except ValueError:
        return 0


@dataclass(frozen=True)
class ListingCandidate:
    """
    A per-page hypothesis that a listing exists on that page.

    Created once during detection and never mutated.
    """
    page_index: int
    raw_name: str
    raw_address: str
    raw_rent: int
    dedup_key: str
    preview_text: str
    file_id: str = ""
    file_name: str = ""

    def to_dict(self) -> Dict:
        return {
            'page_index': self.page_index,
            'raw_name': self.raw_name,
            'raw_address': self.raw_address,
            'raw_rent': self.raw_rent,
            'dedup_key': self.dedup_key,
            'preview_text': self.preview_text,
            'file_id': self.file_id,
            'file_name': self.file_name
        }


class CandidateDetector:
    """
    Detects listing candidates in linear document text.

    Patterns are tested in a fixed order; only the first match of each
    labeled pattern contributes a sub-value.
    """

    # Ordered (label, pattern) pairs
    PATTERNS: List[Tuple[str, re.Pattern]] = [
        ('name', re.compile(
            r'(?:物件名|建物名|\bProperty Name|\bBuilding Name)[：:]\s*(.+?)(?:\n|$)', re.IGNORECASE)),
        ('rent', re.compile(
            r'(?:賃料|家賃|\bRent)[：:]\s*[¥￥]?\s*([0-9,]+)\s*(?:円|yen)?(?![0-9.万])', re.IGNORECASE)),
        ('address', re.compile(
            r'(?:所在地|住所|\bAddress)[：:]\s*(.+?)(?:\n|$)', re.IGNORECASE)),
        ('floor_plan', re.compile(
            r'(?:間取り|\bLayout)[：:]\s*([0-9]+[KLDRS]+)', re.IGNORECASE)),
        ('building_age', re.compile(
            r'(?:築年数?|築)[：:]?\s*([0-9]+年|[0-9]+\.[0-9]+年)')),
    ]

    def __init__(self, preview_chars: int = PREVIEW_TEXT_CHARS):
        self.preview_chars = preview_chars

    def match_page(self, page_text: str) -> Dict[str, str]:
        """Return {label: first captured group} for every pattern that matches."""
        matches: Dict[str, str] = {}
        for label, pattern in self.PATTERNS:
            match = pattern.search(page_text)
            if match:
                matches[label] = (match.group(1) or '').strip()
        return matches

    def detect_page(
        self,
        page_text: str,
        page_index: int,
        file_id: str = "",
        file_name: str = ""
    ) -> Optional[ListingCandidate]:
        matches = self.match_page(page_text)
        if not matches:
            return None

        name = matches.get('name', '')
        address = matches.get('address', '')
        rent = parse_rent(matches.get('rent')) if 'rent' in matches else 0

        return ListingCandidate(
            page_index=page_index,
            raw_name=name or f"物件_{page_index + 1}",
            raw_address=address,
            raw_rent=rent,
            dedup_key=make_dedup_key(name, address, rent),
            preview_text=page_text[:self.preview_chars],
            file_id=file_id,
            file_name=file_name
        )

    def detect_candidates(
        self,
        text: str,
        page_count: int,
        file_id: str = "",
        file_name: str = ""
    ) -> List[ListingCandidate]:
        """
        Detect candidates across all page slices of one document.

        Args:
            text: Linear text content of the document
            page_count: Number of pages in the document
            file_id: Identifier of the source file
            file_name: Name of the source file

        Returns:
            Candidates in page order (at most one per page)
        """
        candidates = []
        for page_index, page_text in enumerate(split_pages(text, page_count)):
            candidate = self.detect_page(page_text, page_index, file_id, file_name)
            if candidate is not None:
                candidates.append(candidate)

        logger.info(
            f"Detected {len(candidates)} listing candidate(s) in "
            f"{file_name or 'document'} ({page_count} page(s))"
        )
        return candidates
