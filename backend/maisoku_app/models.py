"""
Pydantic models for API request/response schemas.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime


class RateLimitStatus(BaseModel):
    """Rate limit status response model."""
    total_calls: int
    max_calls: int
    remaining_calls: int
    calls_by_service: Dict[str, int]
    services: Dict[str, Dict[str, Any]] = {}


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    llm_configured: bool = False
    object_store_configured: bool = False
    notion_configured: bool = False


class BatchResponse(BaseModel):
    """Response for upload / process endpoints."""
    success: bool
    session_id: Optional[str] = None
    files: List[Dict[str, Any]] = []
    groups: List[Dict[str, Any]] = []
    listings: List[Dict[str, Any]] = []
    statistics: Optional[Dict[str, Any]] = None
    cancelled: bool = False
    message: Optional[str] = None
    error: Optional[str] = None


class ExtractRequest(BaseModel):
    """Request to extract one listing from candidate text."""
    session_id: Optional[str] = None
    candidate_text: Optional[str] = None
    page_index: int = Field(0, ge=0)


class ExtractResponse(BaseModel):
    """Normalized listing for one candidate."""
    success: bool
    session_id: Optional[str] = None
    listing: Dict[str, Dict[str, Any]] = {}
    method: Optional[str] = None
    page_index: int = 0
    error: Optional[str] = None


class ImageClassifyRequest(BaseModel):
    """Request to render and classify the pages of a stored document."""
    session_id: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_id: str = ""


class ImageClassifyResponse(BaseModel):
    """Classified page images of one document."""
    success: bool
    session_id: Optional[str] = None
    file_name: Optional[str] = None
    images: List[Dict[str, Any]] = []
    message: Optional[str] = None
    error: Optional[str] = None


class NotionPublishRequest(BaseModel):
    """Listings to publish, keyed by field key or destination property name."""
    listings: List[Dict[str, Dict[str, Any]]] = []
    database_id: Optional[str] = None


class NotionPublishResponse(BaseModel):
    """Outcome of publishing listings."""
    success: bool
    results: List[Dict[str, Any]] = []
    created: int = 0
    missing_fields: List[str] = []
    error: Optional[str] = None


class CancelResponse(BaseModel):
    """Response for session cancellation."""
    success: bool
    session_id: str
    cancelled: bool


class SchemaField(BaseModel):
    """One field of the listing schema."""
    key: str
    notion_name: str
    kind: str
    required: bool
    options: List[str] = []
    description: str = ""


class SchemaResponse(BaseModel):
    """The listing field registry."""
    version: str
    required_keys: List[str]
    optional_keys: List[str]
    destination_required: List[str]
    fields: List[SchemaField]
