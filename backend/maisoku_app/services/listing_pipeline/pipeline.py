"""
Maisoku Listing Pipeline
========================

The orchestrator that runs a batch of flyer documents through every stage.

Pipeline Stages:
----------------
1. UPLOAD: store each document (placeholder URL if the store fails)
2. DETECT: read linear text + page count, find listing candidates per page
3. GROUP: merge sightings of the same listing across pages and files
4. EXTRACT: one extraction per group, from the richest sighting's text
5. IMAGES (optional): render pages, classify each, attach to listings
   by (file, page)

Design Principles:
------------------
- Every per-item failure degrades to a valid result object; only bad batch
  input raises
- Files run with bounded concurrency; results keep input order
- External calls (extraction, vision) run one at a time with a fixed delay
  between calls to the same service
- Progress is published as events; stages never touch presentation state

Cancellation:
-------------
`cancel(session_id)` abandons a batch. In-flight calls are not interrupted;
whatever arrives afterwards is discarded and the batch returns what was
already aggregated, flagged `cancelled`.
"""

import logging
import threading
import uuid
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from maisoku_app.config import Config
from maisoku_app.services.object_store import ObjectStore, get_object_store
from maisoku_app.utils.pdf_handler import PDFHandler
from maisoku_app.utils.rate_limiter import RateLimiter

from .candidates import CandidateDetector, ListingCandidate
from .evidence import PropertyListing, average_confidence, listing_to_dict
from .extraction import ExtractionMethod, ExtractionOrchestrator, ExtractionService
from .grouping import ListingGroup, ListingMatcher, group_candidates
from .image_classifier import ExtractedImage, ImageClassifier, VisionClassificationService
from .progress import NullProgressChannel, ProgressChannel, Stage
from .schema import SCHEMA, ListingSchema

logger = logging.getLogger(__name__)


class BatchInputError(ValueError):
    """The batch cannot be processed at all (no files, no session id)."""


@dataclass
class DocumentInput:
    """
    One document of a batch.

    Either `content` (PDF bytes) or `text` must be set. With `text`, the
    page count defaults to 1.
    """
    name: str
    content: Optional[bytes] = None
    text: Optional[str] = None
    page_count: Optional[int] = None
    content_type: str = "application/pdf"


@dataclass
class ProcessedFile:
    """Per-document record: name, page count, candidates, images."""
    id: str
    name: str
    url: str = ""
    pages: int = 0
    candidates: List[ListingCandidate] = field(default_factory=list)
    images: List[ExtractedImage] = field(default_factory=list)
    text: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'pages': self.pages,
            'candidates': [c.to_dict() for c in self.candidates],
            'images': [i.to_dict() for i in self.images],
            'text': self.text
        }
        if self.error:
            data['error'] = self.error
        return data


@dataclass
class ExtractedListing:
    """A normalized listing for one listing group."""
    group_id: str
    listing: PropertyListing
    method: str
    page_indexes: List[int]
    file_ids: List[str]
    group_confidence: float
    images: List[ExtractedImage] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def average_confidence(self) -> float:
        return average_confidence(self.listing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'group_id': self.group_id,
            'listing': listing_to_dict(self.listing),
            'method': self.method,
            'page_indexes': self.page_indexes,
            'file_ids': self.file_ids,
            'group_confidence': self.group_confidence,
            'images': [i.to_dict() for i in self.images],
            'error': self.error
        }


@dataclass
class BatchResult:
    """
    Everything a batch produced: files, listing groups, listings.

    This is the surface handed to presentation and publishing code.
    """
    session_id: str
    files: List[ProcessedFile] = field(default_factory=list)
    groups: List[ListingGroup] = field(default_factory=list)
    listings: List[ExtractedListing] = field(default_factory=list)
    started_at: str = ""
    finished_at: str = ""
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'files': [f.to_dict() for f in self.files],
            'groups': [g.to_dict() for g in self.groups],
            'listings': [l.to_dict() for l in self.listings],
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'cancelled': self.cancelled
        }

    def get_statistics(self) -> Dict[str, Any]:
        """Summary counts for monitoring and quality review."""
        candidate_count = sum(len(f.candidates) for f in self.files)
        field_confidences = [
            scored.confidence
            for listing in self.listings
            for scored in listing.listing.values()
        ]
        image_types = Counter(
            image.type.value for f in self.files for image in f.images
        )

        return {
            'session_id': self.session_id,
            'file_count': len(self.files),
            'failed_file_count': sum(1 for f in self.files if f.error),
            'candidate_count': candidate_count,
            'group_count': len(self.groups),
            'duplicates_merged': candidate_count - len(self.groups),
            'listing_count': len(self.listings),
            'fallback_count': sum(
                1 for l in self.listings if l.method == ExtractionMethod.PATTERN_FALLBACK
            ),
            'average_confidence': round(
                sum(field_confidences) / len(field_confidences), 4
            ) if field_confidences else 0.0,
            'image_type_distribution': dict(image_types),
            'cancelled': self.cancelled
        }


class ListingPipeline:
    """
    Batch pipeline for maisoku flyers.

    Example usage:

        client = get_llm_client()
        pipeline = ListingPipeline(
            extraction_service=LLMExtractionService(client),
            classification_service=LLMVisionClassifier(client),
        )

        with open('flyer.pdf', 'rb') as f:
            result = pipeline.process_batch([DocumentInput('flyer.pdf', content=f.read())])

        result.to_dict()
        result.get_statistics()
    """

    def __init__(
        self,
        extraction_service: Optional[ExtractionService] = None,
        classification_service: Optional[VisionClassificationService] = None,
        object_store: Optional[ObjectStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        progress: Optional[ProgressChannel] = None,
        matcher: Optional[ListingMatcher] = None,
        max_file_concurrency: Optional[int] = None,
        inter_call_delay: Optional[float] = None,
        pdf_handler: Optional[PDFHandler] = None,
        schema: ListingSchema = SCHEMA
    ):
        """
        Initialize the pipeline.

        Args:
            extraction_service: Extraction black box; None means pattern extraction only
            classification_service: Vision black box; None labels every page 'other'
            object_store: Where documents and page images are stored
            rate_limiter: Limiter used to space external calls
            progress: Channel progress events are published to
            matcher: Listing matcher for grouping (defaults to dedup-key equality)
            max_file_concurrency: Files processed at once
            inter_call_delay: Fixed delay between calls to the same service
            pdf_handler: PDF text/render helper
            schema: Listing schema
        """
        self.detector = CandidateDetector(preview_chars=Config.PREVIEW_TEXT_CHARS)
        self.orchestrator = ExtractionOrchestrator(extraction_service, schema)
        self.image_classifier = ImageClassifier(classification_service)
        self.object_store = object_store or get_object_store()
        self.rate_limiter = rate_limiter or RateLimiter(enabled=False)
        self.progress = progress or NullProgressChannel()
        self.matcher = matcher
        self.max_file_concurrency = max(1, max_file_concurrency or Config.MAX_FILE_CONCURRENCY)
        self.inter_call_delay = (
            Config.INTER_CALL_DELAY_SECONDS if inter_call_delay is None else inter_call_delay
        )
        self.pdf_handler = pdf_handler or PDFHandler()
        self.schema = schema

        # sessions with a batch in flight, and the subset abandoned by the caller
        self._running: Set[str] = set()
        self._cancelled: Set[str] = set()
        self._cancel_lock = threading.Lock()

        logger.info(
            f"Initialized ListingPipeline - "
            f"extraction service: {extraction_service is not None}, "
            f"vision service: {classification_service is not None}, "
            f"file concurrency: {self.max_file_concurrency}"
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, session_id: str) -> bool:
        """
        Abandon the batch running under `session_id`. Results arriving
        afterwards are discarded.

        Returns:
            False when no batch is in flight for the session
        """
        with self._cancel_lock:
            if session_id not in self._running:
                logger.info(f"Cancel ignored: no batch running for session {session_id}")
                return False
            self._cancelled.add(session_id)
        logger.warning(f"Session {session_id} cancelled")
        self.progress.publish(session_id, Stage.COMPLETE, message="Session cancelled", level="warn")
        return True

    def is_cancelled(self, session_id: str) -> bool:
        with self._cancel_lock:
            return session_id in self._cancelled

    def _start(self, session_id: str):
        with self._cancel_lock:
            if session_id in self._running:
                raise BatchInputError(f"A batch is already running for session {session_id}")
            self._running.add(session_id)

    def _forget(self, session_id: str):
        with self._cancel_lock:
            self._running.discard(session_id)
            self._cancelled.discard(session_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _pace(self, service: str):
        """Space consecutive calls to the same external service."""
        self.rate_limiter.wait_if_needed(f"pipeline:{service}", self.inter_call_delay)

    def _publish(self, session_id: str, stage: Stage, processed: int = 0, total: int = 0,
                 message: str = "", level: str = "info"):
        if not self.is_cancelled(session_id):
            self.progress.publish(session_id, stage, processed, total, message, level)

    def _read_document(self, document: DocumentInput) -> Tuple[str, int]:
        if document.text is not None:
            return document.text, document.page_count or 1
        if document.content is None:
            raise ValueError("Document has neither content nor text")
        text, page_count = self.pdf_handler.extract_text(document.content)
        return text, document.page_count or page_count

    def _process_file(self, document: DocumentInput, session_id: str) -> ProcessedFile:
        """Upload, read and detect one document. Never raises."""
        file_id = str(uuid.uuid4())

        try:
            data = document.content if document.content is not None else (document.text or '').encode('utf-8')
            url = self.object_store.put(
                f"{session_id}/{document.name}",
                data,
                public=True,
                content_type=document.content_type if document.content is not None else 'text/plain'
            )

            text, page_count = self._read_document(document)
            candidates = self.detector.detect_candidates(text, page_count, file_id, document.name)

            return ProcessedFile(
                id=file_id,
                name=document.name,
                url=url,
                pages=page_count,
                candidates=candidates,
                text=text[:Config.EXTRACTION_TEXT_CHARS]
            )

        except Exception as e:
            logger.error(f"Error processing file {document.name}: {e}")
            return ProcessedFile(
                id=file_id,
                name=document.name,
                error=f"File processing error: {e}"
            )

    def _process_files(self, documents: Sequence[DocumentInput], session_id: str) -> List[ProcessedFile]:
        files: List[ProcessedFile] = []
        total = len(documents)
        workers = min(self.max_file_concurrency, total)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = executor.map(lambda doc: self._process_file(doc, session_id), documents)
            for index, processed in enumerate(results, 1):
                if self.is_cancelled(session_id):
                    continue
                files.append(processed)
                level = "error" if processed.error else "info"
                self._publish(
                    session_id, Stage.DETECT, index, total,
                    f"{processed.name}: {len(processed.candidates)} candidate(s)", level
                )
        return files

    def _extract_groups(self, groups: List[ListingGroup], session_id: str) -> List[ExtractedListing]:
        listings: List[ExtractedListing] = []
        total = len(groups)

        for index, group in enumerate(groups, 1):
            if self.orchestrator.service is not None:
                self._pace("extraction")
            outcome = self.orchestrator.extract_candidate(group.primary_candidate)

            if self.is_cancelled(session_id):
                break

            listings.append(ExtractedListing(
                group_id=group.id,
                listing=outcome.listing,
                method=outcome.method,
                page_indexes=group.page_indexes,
                file_ids=group.file_ids,
                group_confidence=group.group_confidence,
                error=outcome.error
            ))
            self._publish(
                session_id, Stage.EXTRACT, index, total,
                f"{group.primary_candidate.raw_name} ({outcome.method})",
                "warn" if outcome.used_fallback else "info"
            )

        return listings

    def classify_document(
        self,
        pdf_bytes: bytes,
        file_name: str,
        session_id: str,
        file_id: str = ""
    ) -> List[ExtractedImage]:
        """
        Render every page of a PDF, store it and classify it.

        Rendering failures yield no images; classification failures yield
        'other' images. Never raises for either.
        """
        images: List[ExtractedImage] = []
        pages = self.pdf_handler.render_pages(pdf_bytes)

        for page_index, png_bytes in enumerate(pages):
            if self.is_cancelled(session_id):
                break

            page_number = page_index + 1
            url = self.object_store.put(
                f"{session_id}/images/{file_name}_page_{page_number}.png",
                png_bytes,
                public=True,
                content_type='image/png'
            )
            if self.image_classifier.service is not None:
                self._pace("vision")
            image = self.image_classifier.classify_page(
                png_bytes,
                image_id=f"{session_id}_{file_name}_page_{page_number}",
                url=url,
                page_index=page_index,
                file_id=file_id
            )
            if self.is_cancelled(session_id):
                break
            images.append(image)

        return images

    def _classify_files(self, files: List[ProcessedFile], documents: Sequence[DocumentInput], session_id: str):
        # files and documents are index-aligned unless the batch was cancelled
        renderable = [
            (processed, document)
            for processed, document in zip(files, documents)
            if not processed.error and document.content is not None
        ]

        for index, (processed, document) in enumerate(renderable, 1):
            processed.images = self.classify_document(
                document.content, processed.name, session_id, processed.id
            )
            self._publish(
                session_id, Stage.IMAGES, index, len(renderable),
                f"{processed.name}: {len(processed.images)} image(s)"
            )

    @staticmethod
    def associate_images(listings: List[ExtractedListing], files: List[ProcessedFile]):
        """Attach page images to every listing seen on that (file, page)."""
        images_by_page: Dict[Tuple[str, int], List[ExtractedImage]] = {}
        for processed in files:
            for image in processed.images:
                images_by_page.setdefault((processed.id, image.page_index), []).append(image)

        for listing in listings:
            listing.images = [
                image
                for key in zip(listing.file_ids, listing.page_indexes)
                for image in images_by_page.get(key, [])
            ]

    # ------------------------------------------------------------------
    # Batch entry point
    # ------------------------------------------------------------------

    def process_batch(
        self,
        documents: Sequence[DocumentInput],
        session_id: Optional[str] = None,
        classify_images: bool = False,
        extract: bool = True
    ) -> BatchResult:
        """
        Run a batch of documents through the pipeline.

        Args:
            documents: Documents of the batch
            session_id: Opaque session id; generated when None
            classify_images: Render and classify every page
            extract: Run extraction (False stops after grouping)

        Returns:
            BatchResult with files, groups and listings

        Raises:
            BatchInputError: no documents, an empty session id, or a batch
                already running under the same session id
        """
        if not documents:
            raise BatchInputError("No files provided")
        if session_id is not None and not str(session_id).strip():
            raise BatchInputError("Missing session id")

        session_id = session_id or str(uuid.uuid4())
        self._start(session_id)
        result = BatchResult(session_id=session_id, started_at=datetime.now().isoformat())

        try:
            self.progress.open(session_id)
            logger.info(f"Processing batch {session_id} ({len(documents)} file(s))")
            self._publish(session_id, Stage.UPLOAD, 0, len(documents), f"Received {len(documents)} file(s)")

            result.files = self._process_files(documents, session_id)

            if not self.is_cancelled(session_id):
                candidates = [c for f in result.files for c in f.candidates]
                result.groups = group_candidates(candidates, self.matcher)
                self._publish(
                    session_id, Stage.GROUP, len(result.groups), len(candidates),
                    f"{len(candidates)} candidate(s) in {len(result.groups)} listing group(s)"
                )

            if extract and not self.is_cancelled(session_id):
                result.listings = self._extract_groups(result.groups, session_id)

            if classify_images and not self.is_cancelled(session_id):
                self._classify_files(result.files, documents, session_id)
                self.associate_images(result.listings, result.files)

            result.cancelled = self.is_cancelled(session_id)
            result.finished_at = datetime.now().isoformat()

            stats = result.get_statistics()
            logger.info(
                f"Batch {session_id} complete: {stats['listing_count']} listing(s), "
                f"{stats['group_count']} group(s), {stats['fallback_count']} fallback(s)"
                + (" [cancelled]" if result.cancelled else "")
            )
            self._publish(
                session_id, Stage.COMPLETE, len(result.listings), len(result.groups),
                f"{len(result.groups)} listing(s) detected", "success"
            )
            return result

        except Exception as e:
            logger.error(f"Error in batch {session_id}: {e}", exc_info=True)
            self._publish(session_id, Stage.ERROR, message=str(e), level="error")
            raise

        finally:
            self._forget(session_id)
