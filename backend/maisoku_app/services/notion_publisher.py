"""
Destination database publisher (Notion).

Creates one database page per normalized listing. The destination must
expose every required property by name before any page is created; a
mismatch aborts the whole publishing call and reports the missing names.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

from maisoku_app.config import Config
from maisoku_app.services.listing_pipeline.evidence import PropertyListing
from maisoku_app.services.listing_pipeline.llm_client import sanitize_api_key
from maisoku_app.services.listing_pipeline.schema import SCHEMA, ListingSchema, ValueKind

logger = logging.getLogger(__name__)

# Properties the destination database must expose
REQUIRED_DESTINATION_FIELDS = (
    'property_name', 'address', 'rent', 'floor_plan', 'floor_area',
    'management_fee', 'deposit_months', 'key_money_months',
)

_NUMBER_KINDS = (ValueKind.INT, ValueKind.INT_ZERO, ValueKind.FLOAT, ValueKind.FLOAT_ZERO)


class NotionConfigError(ValueError):
    """Token or database id missing."""


class NotionAPIError(Exception):
    """The destination API rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DestinationSchemaError(Exception):
    """The destination database lacks required properties."""

    def __init__(self, missing_fields: List[str]):
        self.missing_fields = missing_fields
        super().__init__(
            f"Destination database is missing required properties: {', '.join(missing_fields)}"
        )


@dataclass
class PageCreationResult:
    """Outcome of creating one destination page."""
    success: bool
    page_id: Optional[str] = None
    page_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'page_id': self.page_id,
            'page_url': self.page_url,
            'error': self.error
        }


def _rich_text(value: Any) -> List[Dict[str, Any]]:
    return [{'text': {'content': str(value)}}]


def build_properties(listing: PropertyListing, schema: ListingSchema = SCHEMA) -> Dict[str, Any]:
    """
    Convert a listing into destination page properties.

    Fields without a value are left out. The property name becomes the
    page title; other fields map by value kind.
    """
    properties: Dict[str, Any] = {}

    for spec in schema.fields:
        scored = listing.get(spec.key)
        if scored is None:
            continue
        value = scored.value

        if spec.kind in _NUMBER_KINDS:
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                logger.warning(f"Skipping non-numeric value for {spec.notion_name}: {value!r}")
                continue
            properties[spec.notion_name] = {'number': value}
            continue

        if not value:
            continue

        if spec.key == 'property_name':
            properties[spec.notion_name] = {'title': _rich_text(value)}
        elif spec.kind == ValueKind.SELECT:
            properties[spec.notion_name] = {'select': {'name': str(value)}}
        elif spec.kind == ValueKind.TAGS:
            if isinstance(value, list):
                properties[spec.notion_name] = {
                    'multi_select': [{'name': str(tag)} for tag in value]
                }
        elif spec.kind == ValueKind.PHONE:
            properties[spec.notion_name] = {'phone_number': str(value)}
        else:
            properties[spec.notion_name] = {'rich_text': _rich_text(value)}

    return properties


class NotionPublisher:
    """
    Client for the Notion REST API.

    Example usage:

        publisher = NotionPublisher()
        results = publisher.publish_listings([listing_a, listing_b])
    """

    def __init__(
        self,
        token: Optional[str] = None,
        database_id: Optional[str] = None,
        api_base: Optional[str] = None,
        api_version: Optional[str] = None,
        required_fields: Sequence[str] = REQUIRED_DESTINATION_FIELDS,
        schema: ListingSchema = SCHEMA,
        session: Optional[requests.Session] = None
    ):
        self.token = sanitize_api_key(token if token is not None else Config.NOTION_API_TOKEN)
        self.database_id = database_id or Config.NOTION_DATABASE_ID
        self.api_base = (api_base or Config.NOTION_API_BASE).rstrip('/')
        self.api_version = api_version or Config.NOTION_VERSION
        self.required_fields = tuple(required_fields)
        self.schema = schema
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            raise NotionConfigError("NOTION_API_TOKEN environment variable is not set")
        return {
            'Authorization': f"Bearer {self.token}",
            'Notion-Version': self.api_version,
            'Content-Type': 'application/json'
        }

    def _resolve_database_id(self, database_id: Optional[str]) -> str:
        db_id = database_id or self.database_id
        if not db_id:
            raise NotionConfigError(
                "Notion database id is not configured. Set NOTION_DATABASE_ID or pass database_id."
            )
        return db_id

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(
                method,
                f"{self.api_base}{path}",
                headers=self._headers(),
                timeout=30,
                **kwargs
            )
        except requests.RequestException as e:
            raise NotionAPIError(f"Notion request failed: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get('message', response.text)
            except ValueError:
                message = response.text
            raise NotionAPIError(message, status_code=response.status_code)
        return response.json()

    def validate_schema(self, database_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Check the destination exposes every required property.

        Raises:
            DestinationSchemaError: listing the missing property names
        """
        db_id = self._resolve_database_id(database_id)
        database = self._request('GET', f"/databases/{db_id}")
        properties = database.get('properties') or {}

        missing = [
            self.schema.notion_name(key)
            for key in self.required_fields
            if self.schema.notion_name(key) not in properties
        ]
        if missing:
            logger.error(f"Destination schema validation failed, missing: {missing}")
            raise DestinationSchemaError(missing)
        return properties

    def create_page(self, listing: PropertyListing, database_id: Optional[str] = None) -> PageCreationResult:
        db_id = self._resolve_database_id(database_id)
        payload = {
            'parent': {'database_id': db_id},
            'properties': build_properties(listing, self.schema),
            'icon': {'emoji': "🏠"}
        }
        page = self._request('POST', "/pages", json=payload)
        logger.info(f"Created Notion page {page.get('id')}")
        return PageCreationResult(success=True, page_id=page.get('id'), page_url=page.get('url'))

    def publish_listings(
        self,
        listings: List[PropertyListing],
        database_id: Optional[str] = None
    ) -> List[PageCreationResult]:
        """
        Validate the destination once, then create one page per listing.

        A schema mismatch raises before any page is created. Failures of
        individual pages are reported per listing.
        """
        db_id = self._resolve_database_id(database_id)
        self.validate_schema(db_id)

        results = []
        for index, listing in enumerate(listings):
            try:
                results.append(self.create_page(listing, db_id))
            except NotionAPIError as e:
                logger.error(f"Failed to create page for listing {index}: {e}")
                results.append(PageCreationResult(success=False, error=str(e)))

        created = sum(1 for r in results if r.success)
        logger.info(f"Published {created}/{len(listings)} listing(s) to Notion")
        return results
