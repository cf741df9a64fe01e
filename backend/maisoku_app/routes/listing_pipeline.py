"""
Listing Pipeline API Routes
===========================

REST API endpoints for the maisoku listing pipeline.

Endpoints:
- POST /api/v1/listings/upload - Detect and group listings (no extraction)
- POST /api/v1/listings/process - Full batch: detect, group, extract, images
- POST /api/v1/listings/extract - Extract one listing from candidate text
- POST /api/v1/listings/images/classify - Render and classify a stored PDF
- POST /api/v1/listings/notion - Publish listings to the Notion database
- DELETE /api/v1/listings/sessions/{session_id} - Cancel a batch
- GET /api/v1/listings/sessions/{session_id}/stream - SSE progress
- GET /api/v1/listings/schema - Get the listing field registry
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from maisoku_app.config import Config
from maisoku_app.models import (
    BatchResponse, CancelResponse, ExtractRequest, ExtractResponse,
    ImageClassifyRequest, ImageClassifyResponse, NotionPublishRequest,
    NotionPublishResponse, SchemaField, SchemaResponse
)
from maisoku_app.services.listing_pipeline import (
    SCHEMA, BatchInputError, DocumentInput, ListingPipeline,
    LLMExtractionService, LLMVisionClassifier, ProgressChannel
)
from maisoku_app.services.listing_pipeline.evidence import listing_from_dict, listing_to_dict
from maisoku_app.services.listing_pipeline.llm_client import get_llm_client
from maisoku_app.services.notion_publisher import (
    REQUIRED_DESTINATION_FIELDS, DestinationSchemaError, NotionAPIError,
    NotionConfigError, NotionPublisher
)
from maisoku_app.services.object_store import ObjectStoreError
from maisoku_app.utils.pdf_handler import PDFHandler
from maisoku_app.utils.rate_limiter import get_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/listings", tags=["Listing Pipeline"])

SSE_POLL_INTERVAL_SECONDS = 0.5
# a stream for a session nobody has opened ends after this long
SSE_UNKNOWN_SESSION_GRACE_SECONDS = 10.0


# ============================================================================
# Pipeline Instances (Singletons)
# ============================================================================

_progress_channel = ProgressChannel()
_pipeline_instance: Optional[ListingPipeline] = None
_publisher_instance: Optional[NotionPublisher] = None


def get_progress_channel() -> ProgressChannel:
    return _progress_channel


def get_pipeline() -> ListingPipeline:
    """Get or create the pipeline instance."""
    global _pipeline_instance

    if _pipeline_instance is None:
        rate_limiter = get_rate_limiter()
        extraction_service = None
        classification_service = None

        try:
            client = get_llm_client(rate_limiter=rate_limiter)
            extraction_service = LLMExtractionService(client, max_tokens=Config.EXTRACTION_MAX_TOKENS)
            classification_service = LLMVisionClassifier(client, max_tokens=Config.CLASSIFICATION_MAX_TOKENS)
        except ValueError as e:
            logger.warning(f"Extraction service unavailable ({e}). Using pattern extraction only.")

        _pipeline_instance = ListingPipeline(
            extraction_service=extraction_service,
            classification_service=classification_service,
            rate_limiter=rate_limiter,
            progress=_progress_channel
        )
        logger.info("Initialized ListingPipeline singleton")

    return _pipeline_instance


def get_notion_publisher() -> NotionPublisher:
    """Get or create the publisher instance."""
    global _publisher_instance

    if _publisher_instance is None:
        _publisher_instance = NotionPublisher()
        logger.info("Initialized NotionPublisher singleton")

    return _publisher_instance


async def _read_uploads(files: Optional[List[UploadFile]]) -> List[DocumentInput]:
    """PDF uploads keep their bytes; anything else is read as UTF-8 text."""
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")

    documents = []
    for upload in files:
        content = await upload.read()
        name = upload.filename or "document"
        if name.lower().endswith('.pdf') or content.startswith(b'%PDF'):
            documents.append(DocumentInput(
                name=name,
                content=content,
                content_type=upload.content_type or 'application/pdf'
            ))
        else:
            documents.append(DocumentInput(
                name=name,
                text=content.decode('utf-8', errors='replace'),
                content_type='text/plain'
            ))
    return documents


async def _run_batch(
    pipeline: ListingPipeline,
    files: Optional[List[UploadFile]],
    session_id: Optional[str],
    classify_images: bool,
    extract: bool
) -> BatchResponse:
    documents = await _read_uploads(files)

    try:
        result = await run_in_threadpool(
            pipeline.process_batch,
            documents,
            session_id=session_id,
            classify_images=classify_images,
            extract=extract
        )
    except BatchInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    data = result.to_dict()
    return BatchResponse(
        success=True,
        session_id=result.session_id,
        files=data['files'],
        groups=data['groups'],
        listings=data['listings'],
        statistics=result.get_statistics(),
        cancelled=result.cancelled,
        message=f"Processed {len(documents)} file(s); detected {len(result.groups)} listing(s)."
    )


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/upload", response_model=BatchResponse)
async def upload_documents(
    files: Optional[List[UploadFile]] = File(None, description="Flyer PDFs (or text files)"),
    session_id: Optional[str] = Query(None, description="Optional session identifier"),
    pipeline: ListingPipeline = Depends(get_pipeline)
) -> BatchResponse:
    """
    Upload flyers, detect listing candidates and group duplicates.

    Extraction is not run; use /extract per group or /process for the
    full batch.
    """
    try:
        return await _run_batch(pipeline, files, session_id, classify_images=False, extract=False)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Upload error: {e}", exc_info=True)
        return BatchResponse(success=False, error=str(e))


@router.post("/process", response_model=BatchResponse)
async def process_documents(
    files: Optional[List[UploadFile]] = File(None, description="Flyer PDFs (or text files)"),
    session_id: Optional[str] = Query(None, description="Optional session identifier"),
    classify_images: bool = Query(False, description="Render and classify every page"),
    pipeline: ListingPipeline = Depends(get_pipeline)
) -> BatchResponse:
    """
    Run the full pipeline over a batch of flyers.

    Returns per-file records, listing groups and normalized listings.
    """
    try:
        return await _run_batch(pipeline, files, session_id, classify_images=classify_images, extract=True)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Pipeline error: {e}", exc_info=True)
        return BatchResponse(success=False, error=str(e))


@router.post("/extract", response_model=ExtractResponse)
async def extract_listing(
    request: ExtractRequest,
    pipeline: ListingPipeline = Depends(get_pipeline)
) -> ExtractResponse:
    """
    Extract one normalized listing from a candidate's text.

    Falls back to pattern extraction when the extraction service fails,
    so a listing with every required field is always returned.
    """
    if not request.session_id or not request.candidate_text:
        raise HTTPException(status_code=400, detail="session_id and candidate_text are required")

    outcome = await run_in_threadpool(
        pipeline.orchestrator.extract, request.candidate_text, request.page_index
    )
    return ExtractResponse(
        success=True,
        session_id=request.session_id,
        listing=listing_to_dict(outcome.listing),
        method=outcome.method,
        page_index=outcome.page_index,
        error=outcome.error
    )


@router.post("/images/classify", response_model=ImageClassifyResponse)
async def classify_images(
    request: ImageClassifyRequest,
    pipeline: ListingPipeline = Depends(get_pipeline)
) -> ImageClassifyResponse:
    """
    Render every page of a stored PDF and classify it.

    Pages whose classification fails are labelled 'other'.
    """
    if not request.session_id or not request.file_url or not request.file_name:
        raise HTTPException(status_code=400, detail="session_id, file_url and file_name are required")

    try:
        try:
            pdf_bytes = await run_in_threadpool(pipeline.object_store.get, request.file_url)
        except ObjectStoreError:
            pdf_bytes = await run_in_threadpool(PDFHandler.download_pdf, request.file_url)
        if not pdf_bytes:
            raise ObjectStoreError(f"Failed to download PDF from {request.file_url}")

        images = await run_in_threadpool(
            pipeline.classify_document,
            pdf_bytes,
            request.file_name,
            request.session_id,
            request.file_id
        )
        return ImageClassifyResponse(
            success=True,
            session_id=request.session_id,
            file_name=request.file_name,
            images=[i.to_dict() for i in images],
            message=f"Extracted and classified {len(images)} image(s)"
        )

    except Exception as e:
        logger.error(f"Image extraction error: {e}", exc_info=True)
        return ImageClassifyResponse(
            success=False,
            session_id=request.session_id,
            file_name=request.file_name,
            error=str(e)
        )


@router.post("/notion", response_model=NotionPublishResponse)
async def publish_to_notion(
    request: NotionPublishRequest,
    publisher: NotionPublisher = Depends(get_notion_publisher)
):
    """
    Publish listings as pages of the destination database.

    The destination schema is checked once before any page is created;
    a mismatch returns 422 with the missing property names.
    """
    if not request.listings:
        raise HTTPException(status_code=400, detail="No listings provided")

    listings = []
    for raw in request.listings:
        listing = listing_from_dict(raw)
        listings.append({SCHEMA.resolve_key(key) or key: value for key, value in listing.items()})

    try:
        results = await run_in_threadpool(publisher.publish_listings, listings, request.database_id)
    except NotionConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DestinationSchemaError as e:
        return JSONResponse(
            status_code=422,
            content=jsonable_encoder(NotionPublishResponse(
                success=False,
                missing_fields=e.missing_fields,
                error=str(e)
            ))
        )
    except NotionAPIError as e:
        status_code = e.status_code if e.status_code in (401, 404) else 502
        return JSONResponse(
            status_code=status_code,
            content=jsonable_encoder(NotionPublishResponse(success=False, error=str(e)))
        )

    created = sum(1 for r in results if r.success)
    return NotionPublishResponse(
        success=created == len(results),
        results=[r.to_dict() for r in results],
        created=created
    )


@router.delete("/sessions/{session_id}", response_model=CancelResponse)
async def cancel_session(
    session_id: str,
    pipeline: ListingPipeline = Depends(get_pipeline)
) -> CancelResponse:
    """
    Abandon a running batch; results arriving afterwards are discarded.

    `cancelled` is false when no batch is running under the session id.
    """
    cancelled = pipeline.cancel(session_id)
    return CancelResponse(success=True, session_id=session_id, cancelled=cancelled)


@router.get("/sessions/{session_id}/stream")
async def stream_session_progress(
    session_id: str,
    channel: ProgressChannel = Depends(get_progress_channel)
):
    """
    Server-Sent Events endpoint for real-time batch progress updates.
    """
    async def event_generator():
        last_index = 0
        unknown_for = 0.0

        try:
            while True:
                events = channel.events_since(session_id, last_index)
                last_index += len(events)

                for event in events:
                    yield event.to_sse()
                    if event.is_terminal:
                        return

                if not events:
                    if channel.is_closed(session_id):
                        return
                    if not channel.has_session(session_id):
                        if unknown_for >= SSE_UNKNOWN_SESSION_GRACE_SECONDS:
                            logger.info(f"Closing SSE stream for unknown session {session_id}")
                            return
                        unknown_for += SSE_POLL_INTERVAL_SECONDS
                    await asyncio.sleep(SSE_POLL_INTERVAL_SECONDS)
                    yield f"event: keepalive\ndata: {json.dumps({'timestamp': datetime.now().isoformat()})}\n\n"

        except Exception as e:
            logger.error(f"Error in SSE stream for session {session_id}: {e}")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )


@router.get("/schema", response_model=SchemaResponse)
async def get_schema() -> SchemaResponse:
    """
    Get the listing field registry.

    Useful for building forms and destination databases that match the
    extracted schema.
    """
    return SchemaResponse(
        version=SCHEMA.version,
        required_keys=SCHEMA.required_keys,
        optional_keys=SCHEMA.optional_keys,
        destination_required=[SCHEMA.notion_name(k) for k in REQUIRED_DESTINATION_FIELDS],
        fields=[
            SchemaField(
                key=spec.key,
                notion_name=spec.notion_name,
                kind=spec.kind.value,
                required=spec.required,
                options=list(spec.options),
                description=spec.description
            )
            for spec in SCHEMA.fields
        ]
    )
