"""
FastAPI application for the Maisoku Listing Extraction workflow.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
import logging

from maisoku_app.config import Config
from maisoku_app.models import HealthResponse, RateLimitStatus
from maisoku_app.routes.listing_pipeline import router as listing_router
from maisoku_app.utils.rate_limiter import get_rate_limiter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Maisoku Listing Extraction API",
    description="API for detecting, extracting and deduplicating rental listings in real-estate flyers",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(listing_router)

# Shared by the extraction and vision clients
rate_limiter = get_rate_limiter()


@app.on_event("startup")
async def startup_event():
    """Validate configuration on startup."""
    try:
        Config.validate()
        logger.info("Configuration validated successfully")
    except ValueError as e:
        # Pattern extraction still works without the extraction service
        logger.warning(f"Configuration incomplete: {e}")


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(),
        llm_configured=bool(Config.LLM_API_KEY),
        object_store_configured=bool(Config.S3_BUCKET),
        notion_configured=bool(Config.NOTION_API_TOKEN and Config.NOTION_DATABASE_ID)
    )


@app.get("/api/rate-limit", response_model=RateLimitStatus)
async def get_rate_limit_status():
    """Get current rate limit status."""
    stats = rate_limiter.get_stats()
    return RateLimitStatus(
        total_calls=stats['total_calls'],
        max_calls=stats['max_calls'],
        remaining_calls=stats['remaining_calls'],
        calls_by_service=stats['calls_by_service'],
        services={service: rate_limiter.get_stats(service) for service in stats['calls_by_service']}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "maisoku_app.main:app",
        host=Config.API_HOST,
        port=Config.API_PORT,
        reload=True
    )
