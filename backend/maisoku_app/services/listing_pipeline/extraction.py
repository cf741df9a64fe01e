"""
Extraction Orchestrator
=======================

Turns a listing group's primary candidate into a normalized PropertyListing.

Two tiers:
1. Rich extraction: the extraction service reads the page text and returns
   a schema-shaped JSON object, which is passed through the normalizers
2. Pattern fallback: on ANY failure of tier 1 (transport error, non-JSON
   answer, wrong shape) a small fixed set of regexes is run over the same
   text; matches get a fixed low confidence (0.3), misses become not-found
   fields

The orchestrator is a total function: every candidate yields a listing with
all required fields present, and no service error reaches the caller.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .candidates import ListingCandidate
from .evidence import (
    PATTERN_FALLBACK_CONFIDENCE,
    Evidence,
    EvidenceScoredField,
    PropertyListing,
    truncate_snippet,
)
from .llm_client import LLMClient, parse_json_response
from .normalizers import ensure_required_fields, normalize_extracted_data, normalize_int
from .schema import SCHEMA, ListingSchema

logger = logging.getLogger(__name__)


class ExtractionMethod:
    LLM = "llm"
    PATTERN_FALLBACK = "pattern_fallback"


class ExtractionService:
    """
    Black-box extraction service: page text in, schema-shaped guess out.

    Implementations return a dict mapping field keys to
    `{value, confidence, evidence}` objects, or raise on failure.
    """

    def extract(self, text: str, page_index: int) -> Dict[str, Any]:
        raise NotImplementedError


class LLMExtractionService(ExtractionService):
    """Extraction service backed by a language model."""

    EXTRACTION_PROMPT_TEMPLATE = """あなたは賃貸物件情報の抽出の専門家です。以下のマイソクテキストから物件情報を正確に抽出し、JSON形式で返してください。

【抽出対象のテキスト】
{text}

【出力形式】
以下のキーを持つJSONオブジェクトを```json コードブロックで返してください。各フィールドには value（抽出した値）、confidence（0-1の信頼度）、evidence（根拠となる原文）を含めてください。

```json
{{
  "property_name": {{"value": "パークマンション青山", "confidence": 0.95, "evidence": "物件名: パークマンション青山"}},
  "rent": {{"value": 120000, "confidence": 0.9, "evidence": "賃料: 120,000円"}}
}}
```

【フィールド一覧】
{field_list}

【抽出ルール】
1. 数値正規化: 賃料 "120,000円" → 120000 / 徒歩 "徒歩5分" → 5 / 面積 "25.5㎡" → 25.5 / 月数 "1ヶ月" → 1
2. 信頼度: 明確に記載 0.9-1.0 / 推測可能 0.5-0.9 / 不確実 0.1-0.5 / 見つからない 0.0
3. evidence: 根拠となる原文を150文字以内で記載
4. 選択肢が指定されたフィールドは選択肢の中から選んでください

値が見つからない場合は、valueをnull、confidenceを0.0にしてください。
"""

    def __init__(
        self,
        client: LLMClient,
        max_tokens: int = 8000,
        schema: ListingSchema = SCHEMA
    ):
        self.client = client
        self.max_tokens = max_tokens
        self.schema = schema

    def _build_field_list(self) -> str:
        lines = []
        for spec in self.schema.fields:
            marker = "必須" if spec.required else "任意"
            line = f"- {spec.key} ({spec.notion_name}, {marker})"
            if spec.options:
                line += f" 選択肢: {' / '.join(spec.options)}"
            lines.append(line)
        return "\n".join(lines)

    def build_prompt(self, text: str) -> str:
        return self.EXTRACTION_PROMPT_TEMPLATE.format(
            text=text,
            field_list=self._build_field_list()
        )

    def extract(self, text: str, page_index: int) -> Dict[str, Any]:
        response_text = self.client.complete(
            self.build_prompt(text),
            max_tokens=self.max_tokens,
            service="extraction"
        )
        return parse_json_response(response_text)


@dataclass
class ExtractionOutcome:
    """A normalized listing plus how it was obtained."""
    listing: PropertyListing
    method: str
    page_index: int
    error: Optional[str] = None

    @property
    def used_fallback(self) -> bool:
        return self.method == ExtractionMethod.PATTERN_FALLBACK


# (field key, pattern) pairs for the fallback path
FALLBACK_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ('property_name', re.compile(r'(?:物件名|建物名|\bProperty Name|\bBuilding Name)[：:\s]*([^\n]+)', re.IGNORECASE)),
    ('rent', re.compile(r'(?:賃料|家賃|\bRent)[：:\s]*[¥￥]?\s*([0-9,]+)\s*(?:円|yen)?(?![0-9.万])', re.IGNORECASE)),
    ('address', re.compile(r'(?:所在地|住所|\bAddress)[：:\s]*([^\n]+)', re.IGNORECASE)),
    ('floor_plan', re.compile(r'(?:間取り|\bLayout)[：:\s]*([0-9]+[RLDKS]+)', re.IGNORECASE)),
]


def fallback_snippet(page_index: int) -> str:
    return f"pattern match failed on page {page_index + 1}"


def pattern_extract(
    text: str,
    page_index: int,
    schema: ListingSchema = SCHEMA
) -> PropertyListing:
    """
    Cheap regex extraction over page text.

    Matched fields get confidence 0.3; every other required field is
    present as a not-found field.
    """
    listing: PropertyListing = {}

    for key, pattern in FALLBACK_PATTERNS:
        match = pattern.search(text)
        if match:
            value: Any = match.group(1).strip()
            if key == 'rent':
                value = normalize_int(value)
            listing[key] = EvidenceScoredField(
                value=value,
                confidence=PATTERN_FALLBACK_CONFIDENCE if value is not None else 0.0,
                evidence=Evidence(page_index=page_index, snippet=truncate_snippet(match.group(0)))
            )
        else:
            listing[key] = EvidenceScoredField.not_found(page_index, fallback_snippet(page_index))

    return ensure_required_fields(listing, page_index, schema)


class ExtractionOrchestrator:
    """
    Drives extraction for listing candidates.

    Example usage:

        client = get_llm_client()
        orchestrator = ExtractionOrchestrator(LLMExtractionService(client))
        outcome = orchestrator.extract_candidate(group.primary_candidate)
        outcome.listing['rent'].value
    """

    def __init__(
        self,
        service: Optional[ExtractionService] = None,
        schema: ListingSchema = SCHEMA
    ):
        """
        Args:
            service: Extraction service; None means pattern extraction only
            schema: Listing schema
        """
        self.service = service
        self.schema = schema

    def extract(self, text: str, page_index: int) -> ExtractionOutcome:
        """
        Extract a listing from page text. Never raises.
        """
        if self.service is None:
            return ExtractionOutcome(
                listing=pattern_extract(text, page_index, self.schema),
                method=ExtractionMethod.PATTERN_FALLBACK,
                page_index=page_index,
                error="extraction service not configured"
            )

        try:
            raw_data = self.service.extract(text, page_index)
            if not isinstance(raw_data, dict):
                raise ValueError(f"Expected a JSON object, got {type(raw_data).__name__}")
            listing = normalize_extracted_data(raw_data, page_index, self.schema)
            return ExtractionOutcome(
                listing=listing,
                method=ExtractionMethod.LLM,
                page_index=page_index
            )
        except Exception as e:
            logger.error(f"Extraction failed on page {page_index + 1}: {e}. Using pattern fallback.")
            return ExtractionOutcome(
                listing=pattern_extract(text, page_index, self.schema),
                method=ExtractionMethod.PATTERN_FALLBACK,
                page_index=page_index,
                error=str(e)
            )

    def extract_candidate(self, candidate: ListingCandidate) -> ExtractionOutcome:
        return self.extract(candidate.preview_text, candidate.page_index)
