"""
Page Image Classification
=========================

Labels each rendered page image with one entry of the closed ImageType set.

The vision service is ADVISORY: it cannot invent labels.
- An out-of-set label becomes ImageType.OTHER; the service's numeric
  confidence is kept (clamped into [0, 1], missing -> 0.0)
- A failed call or an unreadable answer becomes ImageType.OTHER with the
  fixed low confidence 0.1

Classification never fails the pipeline. Pages are classified
independently; no cross-image consistency is attempted.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .evidence import clamp_confidence
from .llm_client import LLMClient, parse_json_response
from .schema import ImageType

logger = logging.getLogger(__name__)

FAILED_CLASSIFICATION_CONFIDENCE = 0.1


class VisionClassificationService:
    """
    Black-box vision classifier.

    `classify` takes a base64 PNG and returns
    `{type, confidence, reasoning?}`, or raises on failure.
    """

    def classify(self, image_base64: str) -> Dict[str, Any]:
        raise NotImplementedError


class LLMVisionClassifier(VisionClassificationService):
    """Vision classification backed by a multimodal model."""

    CLASSIFICATION_PROMPT = """この不動産マイソク（物件資料）のページ画像を分析し、画像の種類を分類してください。

【分類カテゴリー】
- floorplan: 間取り図（平面図、レイアウト図）
- exterior: 建物外観写真
- interior: 室内写真（リビング、寝室など）
- bath: 浴室・洗面所の写真
- kitchen: キッチン・台所の写真
- view: 眺望・景色の写真
- map: 地図・周辺環境図
- logo: 不動産会社のロゴ・ヘッダー
- other: その他（テキスト中心、表、連絡先など）

【出力形式】
以下のJSON形式で回答してください：

```json
{
  "type": "分類カテゴリー",
  "confidence": 0.85,
  "reasoning": "分類の根拠"
}
```

【分類基準】
- confidence: 0.9以上=確実、0.7-0.9=高確率、0.5-0.7=中程度、0.5未満=不確実
- 複数の要素がある場合は、最も支配的な要素で分類
- 間取り図は線画・記号・部屋名が特徴的
- 写真は実際の空間を写したもの
- 地図は道路・建物配置・方位記号が特徴的
"""

    def __init__(self, client: LLMClient, max_tokens: int = 1000):
        self.client = client
        self.max_tokens = max_tokens

    def classify(self, image_base64: str) -> Dict[str, Any]:
        response_text = self.client.complete(
            self.CLASSIFICATION_PROMPT,
            max_tokens=self.max_tokens,
            image_base64=image_base64,
            service="vision"
        )
        return parse_json_response(response_text)


@dataclass
class ImageClassification:
    """Validated classification of one page image."""
    image_type: ImageType
    confidence: float
    reasoning: str = ""
    failed: bool = False


@dataclass(frozen=True)
class ExtractedImage:
    """One rendered page image with its classification."""
    id: str
    url: str
    page_index: int
    type: ImageType = ImageType.OTHER
    confidence: float = FAILED_CLASSIFICATION_CONFIDENCE
    file_id: str = ""
    bounds: Optional[Dict[str, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'url': self.url,
            'page_index': self.page_index,
            'type': self.type.value,
            'confidence': self.confidence,
            'file_id': self.file_id
        }
        if self.bounds is not None:
            data['bounds'] = self.bounds
        return data


def validate_classification(raw: Dict[str, Any]) -> ImageClassification:
    """Clamp a raw service answer onto the closed label set."""
    label = raw.get('type')
    confidence = clamp_confidence(raw.get('confidence'))
    reasoning = raw.get('reasoning') if isinstance(raw.get('reasoning'), str) else ""

    if isinstance(label, str) and ImageType.is_valid(label):
        image_type = ImageType(label)
    else:
        logger.warning(f"Vision service suggested invalid label '{label}'. Using 'other' instead.")
        image_type = ImageType.OTHER

    return ImageClassification(image_type=image_type, confidence=confidence, reasoning=reasoning)


class ImageClassifier:
    """
    Adapter between rendered pages and the vision service.

    Stateless apart from the injected service.
    """

    def __init__(self, service: Optional[VisionClassificationService] = None):
        self.service = service

    def classify_base64(self, image_base64: str) -> ImageClassification:
        """Classify a base64 image. Never raises."""
        if self.service is None:
            return ImageClassification(
                image_type=ImageType.OTHER,
                confidence=FAILED_CLASSIFICATION_CONFIDENCE,
                failed=True
            )

        try:
            raw = self.service.classify(image_base64)
            if not isinstance(raw, dict):
                raise ValueError(f"Expected a JSON object, got {type(raw).__name__}")
            result = validate_classification(raw)
            if result.reasoning:
                logger.debug(f"Classification reasoning: {result.reasoning}")
            return result
        except Exception as e:
            logger.error(f"Image classification failed: {e}. Using fallback.")
            return ImageClassification(
                image_type=ImageType.OTHER,
                confidence=FAILED_CLASSIFICATION_CONFIDENCE,
                failed=True
            )

    def classify_bytes(self, image_bytes: bytes) -> ImageClassification:
        return self.classify_base64(base64.b64encode(image_bytes).decode('utf-8'))

    def classify_page(
        self,
        image_bytes: bytes,
        image_id: str,
        url: str,
        page_index: int,
        file_id: str = ""
    ) -> ExtractedImage:
        """Classify one rendered page and wrap the result."""
        result = self.classify_bytes(image_bytes)
        logger.info(
            f"Classified page {page_index + 1} of {file_id or 'document'} as "
            f"{result.image_type.value} (confidence: {result.confidence:.2f})"
        )
        return ExtractedImage(
            id=image_id,
            url=url,
            page_index=page_index,
            type=result.image_type,
            confidence=result.confidence,
            file_id=file_id
        )
