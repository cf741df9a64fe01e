"""
Maisoku Listing Pipeline
========================

Detects, extracts and deduplicates rental listings in real-estate flyer
("maisoku") documents.

Pipeline Stages:
1. DETECT: per-page listing candidates over linear document text
2. GROUP: merge sightings of the same listing across pages and files
3. EXTRACT: extraction service + field normalization, regex fallback
4. IMAGES: per-page vision classification onto a closed label set

Design Principles:
- Every extracted field carries a clamped confidence and page evidence
- Required fields are always present, even when not found
- Per-item failures degrade; they never fail the batch
- The vision service is advisory; it cannot invent labels
"""

from .schema import SCHEMA, SCHEMA_VERSION, ImageType, ListingSchema, ValueKind
from .evidence import Evidence, EvidenceScoredField, PropertyListing
from .candidates import CandidateDetector, ListingCandidate, make_dedup_key
from .grouping import DedupKeyMatcher, ListingGroup, ListingMatcher, RentBandMatcher, group_candidates
from .extraction import ExtractionOrchestrator, ExtractionService, LLMExtractionService
from .image_classifier import ExtractedImage, ImageClassifier, LLMVisionClassifier, VisionClassificationService
from .progress import ProgressChannel, ProgressEvent, Stage
from .pipeline import (
    BatchInputError,
    BatchResult,
    DocumentInput,
    ExtractedListing,
    ListingPipeline,
    ProcessedFile,
)

__all__ = [
    'ListingPipeline',
    'BatchResult',
    'BatchInputError',
    'DocumentInput',
    'ProcessedFile',
    'ExtractedListing',
    'SCHEMA',
    'SCHEMA_VERSION',
    'ListingSchema',
    'ValueKind',
    'ImageType',
    'Evidence',
    'EvidenceScoredField',
    'PropertyListing',
    'CandidateDetector',
    'ListingCandidate',
    'make_dedup_key',
    'ListingGroup',
    'ListingMatcher',
    'DedupKeyMatcher',
    'RentBandMatcher',
    'group_candidates',
    'ExtractionOrchestrator',
    'ExtractionService',
    'LLMExtractionService',
    'ImageClassifier',
    'ExtractedImage',
    'LLMVisionClassifier',
    'VisionClassificationService',
    # Progress events
    'ProgressChannel',
    'ProgressEvent',
    'Stage',
]
