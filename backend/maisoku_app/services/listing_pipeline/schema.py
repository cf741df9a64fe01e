"""
Property Listing Schema
=======================

Defines the fixed, versioned set of fields extracted for every property
listing, plus the closed label set used for page image classification.

Every field carries:
- A snake_case key (used in service responses and API payloads)
- The destination property name (the Notion database column)
- A value kind, which selects the normalizer
- Whether the field is required

Required fields are ALWAYS present in a listing, even when nothing could be
extracted (value None, confidence 0.0). Optional fields may be absent.

IMPORTANT: The image label set is CLOSED. Any label outside it is mapped
to ImageType.OTHER.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


SCHEMA_VERSION = "1.0"


class ValueKind(str, Enum):
    """How a raw value is coerced into the schema type."""
    INT = "int"                # integer, None when unparseable
    INT_ZERO = "int_zero"      # integer, 0 when unparseable
    FLOAT = "float"            # decimal, None when unparseable
    FLOAT_ZERO = "float_zero"  # decimal, 0.0 when unparseable
    STR = "str"                # trimmed string, None for non-strings
    SELECT = "select"          # passed through unchanged
    TAGS = "tags"              # list of strings
    PHONE = "phone"            # trimmed string, published as a phone number


class ImageType(str, Enum):
    """Closed label set for rendered page images."""
    FLOORPLAN = "floorplan"
    EXTERIOR = "exterior"
    INTERIOR = "interior"
    BATH = "bath"
    KITCHEN = "kitchen"
    VIEW = "view"
    MAP = "map"
    LOGO = "logo"
    OTHER = "other"

    @classmethod
    def is_valid(cls, label: str) -> bool:
        return label in cls._value2member_map_


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of a single listing field."""
    key: str
    notion_name: str
    kind: ValueKind
    required: bool = False
    options: Tuple[str, ...] = ()
    description: str = ""


FIELD_SPECS: List[FieldSpec] = [
    # === REQUIRED ===
    FieldSpec("property_name", "物件名", ValueKind.STR, True,
              description="Building / property name"),
    FieldSpec("address", "所在地", ValueKind.STR, True,
              description="Street address"),
    FieldSpec("rent", "賃料", ValueKind.INT, True,
              description="Monthly rent in yen"),
    FieldSpec("management_fee", "管理費共益費", ValueKind.INT_ZERO, True,
              description="Monthly management / common-area fee in yen"),
    FieldSpec("floor_plan", "間取り", ValueKind.SELECT, True,
              options=("1K", "1R", "1DK", "1LDK", "2K", "2DK", "2LDK", "3LDK以上"),
              description="Floor-plan code"),
    FieldSpec("floor_area", "専有面積", ValueKind.FLOAT, True,
              description="Floor area in square metres"),
    FieldSpec("built_date", "築年月", ValueKind.STR, True,
              description="Construction year/month or building age"),
    FieldSpec("structure", "構造", ValueKind.SELECT, True,
              options=("RC（鉄筋コンクリート）", "SRC（鉄骨鉄筋）", "鉄骨造", "木造"),
              description="Building structure"),
    FieldSpec("orientation", "向き", ValueKind.SELECT, True,
              options=("南", "南東", "南西", "東", "西", "北"),
              description="Main window orientation"),
    FieldSpec("floor_level", "所在階建", ValueKind.STR, True,
              description="Unit floor / total floors"),
    FieldSpec("deposit_months", "敷金月数", ValueKind.FLOAT_ZERO, True,
              description="Deposit in months of rent"),
    FieldSpec("key_money_months", "礼金月数", ValueKind.FLOAT_ZERO, True,
              description="Key money in months of rent"),
    FieldSpec("contract_type", "契約形態", ValueKind.SELECT, True,
              options=("普通借家契約", "定期借家契約"),
              description="Lease type"),
    FieldSpec("transaction_type", "取引態様", ValueKind.SELECT, True,
              options=("貸主", "代理", "専任媒介", "一般媒介"),
              description="Agent's role in the transaction"),
    FieldSpec("management_company", "管理会社元付業者名", ValueKind.STR, True,
              description="Managing / listing agency name"),

    # === OPTIONAL ===
    FieldSpec("property_type", "物件種別", ValueKind.SELECT,
              options=("賃貸マンション", "アパート", "戸建", "テラスハウス", "店舗/事務所"),
              description="Property category"),
    FieldSpec("nearest_station_1", "最寄り駅1", ValueKind.STR,
              description="Nearest station"),
    FieldSpec("station_1_walk_minutes", "駅1徒歩分", ValueKind.INT,
              description="Walking minutes to the nearest station"),
    FieldSpec("nearest_station_2", "最寄り駅2", ValueKind.STR,
              description="Second nearest station"),
    FieldSpec("deposit_notes", "敷金礼金備考", ValueKind.STR,
              description="Notes on deposit / key money"),
    FieldSpec("key_exchange_fee", "鍵交換費用", ValueKind.INT_ZERO,
              description="Key exchange fee in yen"),
    FieldSpec("fire_insurance_fee", "火災保険料", ValueKind.INT_ZERO,
              description="Fire insurance fee in yen"),
    FieldSpec("other_initial_costs", "その他初期費用合計", ValueKind.INT_ZERO,
              description="Other initial costs in yen"),
    FieldSpec("contract_period", "契約期間", ValueKind.STR,
              description="Lease term"),
    FieldSpec("renewal_fee", "更新料", ValueKind.STR,
              description="Renewal fee"),
    FieldSpec("guarantor_terms", "保証会社条件", ValueKind.STR,
              description="Guarantor company conditions"),
    FieldSpec("move_in_date", "入居時期", ValueKind.STR,
              description="Available move-in date"),
    FieldSpec("equipment_tags", "設備タグ", ValueKind.TAGS,
              description="Equipment / amenity tags"),
    FieldSpec("ad_fee", "AD", ValueKind.SELECT,
              options=("なし", "0.5ヶ月", "1ヶ月", "100%", "200%"),
              description="Advertising fee paid to the agent"),
    FieldSpec("agent_phone", "業者電話番号", ValueKind.PHONE,
              description="Agency phone number"),
    FieldSpec("status", "ステータス", ValueKind.SELECT,
              options=("検討中", "資料請求済", "内見予約中", "内見済", "申込済", "却下"),
              description="Internal review status"),
]


@dataclass
class ListingSchema:
    """
    Lookup helpers over the field registry.

    Use the module-level SCHEMA instance rather than constructing this.
    """
    fields: List[FieldSpec] = field(default_factory=lambda: list(FIELD_SPECS))
    version: str = SCHEMA_VERSION

    def __post_init__(self):
        self._by_key: Dict[str, FieldSpec] = {f.key: f for f in self.fields}
        self._by_notion: Dict[str, FieldSpec] = {f.notion_name: f for f in self.fields}

    @property
    def required_keys(self) -> List[str]:
        return [f.key for f in self.fields if f.required]

    @property
    def optional_keys(self) -> List[str]:
        return [f.key for f in self.fields if not f.required]

    def get(self, key: str) -> Optional[FieldSpec]:
        return self._by_key.get(key)

    def notion_name(self, key: str) -> str:
        spec = self._by_key.get(key)
        return spec.notion_name if spec else key

    def resolve_key(self, name: str) -> Optional[str]:
        """Map either a snake_case key or a destination property name to a key."""
        if name in self._by_key:
            return name
        spec = self._by_notion.get(name)
        return spec.key if spec else None


SCHEMA = ListingSchema()
