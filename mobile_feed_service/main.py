"""
FastAPI application for Mobile Feed Service
"""
from fastapi import FastAPI, Depends, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal, Optional
import asyncio
import logging

from .config import settings
from .cache import cache, get_cache, RedisCache
from .service_client import cms_client, get_cms_client, CmsClient
from .dependencies import get_current_viewer_optional
from .exceptions import ServiceException, PipelineError
from .application.feed_service import FeedService, empty_feed_data, parse_include_types
from .application.search_service import SearchService, fallback_search_data
from .schemas import (
    Viewer,
    FeedResponse,
    HealthResponse,
    MAX_QUERY_LENGTH,
    SearchRequest,
    SearchResponse,
    SuggestionsData,
    SuggestionsResponse,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Mobile Feed Service...")

    await cms_client.start()
    await cache.connect()

    logger.info(f"Mobile Feed Service started successfully on port {settings.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down Mobile Feed Service...")

    await cache.disconnect()
    await cms_client.stop()

    logger.info("Mobile Feed Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Mixed mobile feed and ranked search over the CMS document store",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_body(code: str, message: str) -> dict:
    return {"success": False, "message": message, "error": message, "code": code}


@app.exception_handler(ServiceException)
async def service_exception_handler(request: Request, exc: ServiceException):
    return JSONResponse(
        status_code=exc.status,
        content=error_body(exc.code, exc.message),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("query", "body"))
        message = f"Invalid parameter '{field}': {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request parameters"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("VALIDATION_ERROR", message),
    )


# Helper functions to get service instances
def get_feed_service(
    cms: CmsClient = Depends(get_cms_client),
    cache: RedisCache = Depends(get_cache),
) -> FeedService:
    """Get FeedService instance with dependencies"""
    return FeedService(cms, cache)


def get_search_service(cms: CmsClient = Depends(get_cms_client)) -> SearchService:
    """Get SearchService instance with dependencies"""
    return SearchService(cms)


def feed_cache_headers(feed_type: str, sort_by: str) -> dict:
    """Cache-Control policy for a feed response"""
    if feed_type in ("personalized", "following"):
        cache_control = "private, no-cache, no-store, must-revalidate"
    elif sort_by == "createdAt":
        cache_control = "public, max-age=30"
    else:
        cache_control = "public, max-age=120"
    return {"Cache-Control": cache_control, "Vary": "Authorization"}


def feed_fallback_response(page, limit, feed_type, category, sort_by, include_types) -> JSONResponse:
    """500 with an empty-but-valid feed page"""
    error = PipelineError("Feed temporarily unavailable")
    body = FeedResponse(
        success=False,
        message=error.message,
        data=empty_feed_data(page, limit, feed_type, category, sort_by, include_types),
        error=error.message,
        code=error.code,
    )
    return JSONResponse(
        status_code=error.status,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers={"Cache-Control": "no-store", "Vary": "Authorization"},
    )


def search_fallback_response(query: str) -> JSONResponse:
    """500 with empty result lists and generic suggestions"""
    error = PipelineError("Search temporarily unavailable")
    body = SearchResponse(
        success=False,
        message=error.message,
        data=fallback_search_data(query.strip()),
        error=error.message,
        code=error.code,
    )
    return JSONResponse(
        status_code=error.status,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(cache: RedisCache = Depends(get_cache)):
    """Health check endpoint"""
    if not settings.REDIS_ENABLED:
        redis_status = "disabled"
    else:
        redis_status = "up" if await cache.ping() else "down"

    return HealthResponse(
        status="healthy",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        dependencies={"redis": redis_status, "cms": settings.CMS_API_URL},
    )


# Feed endpoints
@app.get(
    "/api/mobile/posts/feed",
    response_model=FeedResponse,
    response_model_exclude_none=True,
    tags=["Feed"],
    summary="Get mixed mobile feed",
)
async def get_feed(
    response: Response,
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    limit: int = Query(
        settings.DEFAULT_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="Items per page"
    ),
    feed_type: Literal["personalized", "discover", "popular", "latest", "following"] = Query(
        "personalized", alias="feedType"
    ),
    category: Optional[str] = Query(None, description="Category id or slug, 'all' for no filter"),
    sort_by: Literal["createdAt", "popularity", "trending"] = Query("createdAt", alias="sortBy"),
    last_seen: Optional[datetime] = Query(None, alias="lastSeen", description="Only items created before this"),
    include_types: Optional[str] = Query(
        None,
        alias="includeTypes",
        description="Comma-separated subset of post, place_recommendation, people_suggestion"
    ),
    viewer: Optional[Viewer] = Depends(get_current_viewer_optional),
    service: FeedService = Depends(get_feed_service),
):
    """
    Get the mixed feed of posts, place recommendations and people suggestions

    - Sources are fetched concurrently; a failing source leaves the rest intact
    - Items are interleaved 2 posts : 1 place : 1 people group
    - Anonymous requests may be served from the Redis cache
    """
    types = parse_include_types(include_types)
    headers = feed_cache_headers(feed_type, sort_by)

    try:
        data = await asyncio.wait_for(
            service.get_feed(
                viewer,
                page=page,
                limit=limit,
                feed_type=feed_type,
                category=category,
                sort_by=sort_by,
                last_seen=last_seen,
                include_types=types,
            ),
            timeout=settings.REQUEST_TIMEOUT,
        )
    except ServiceException:
        raise
    except asyncio.TimeoutError:
        logger.error(f"Feed request timed out after {settings.REQUEST_TIMEOUT}s")
        return feed_fallback_response(page, limit, feed_type, category, sort_by, types)
    except Exception as e:
        logger.exception(f"Error building {feed_type} feed: {e}")
        return feed_fallback_response(page, limit, feed_type, category, sort_by, types)

    response.headers.update(headers)
    return FeedResponse(success=True, message="Feed retrieved successfully", data=data)


# Search endpoints
@app.post(
    "/api/mobile/search",
    response_model=SearchResponse,
    response_model_exclude_none=True,
    tags=["Search"],
    summary="Search locations, guides and users",
)
async def search(
    request: SearchRequest,
    viewer: Optional[Viewer] = Depends(get_current_viewer_optional),
    service: SearchService = Depends(get_search_service),
):
    """
    Ranked search with rule-based query analysis

    - **query**: at least 2 characters after trimming
    - **type**: all, locations, guides or users
    - **coordinates**: optional, enables the proximity bonus
    """
    try:
        data = await asyncio.wait_for(
            service.search(request, viewer),
            timeout=settings.REQUEST_TIMEOUT,
        )
    except ServiceException:
        raise
    except asyncio.TimeoutError:
        logger.error(f"Search request timed out after {settings.REQUEST_TIMEOUT}s")
        return search_fallback_response(request.query)
    except Exception as e:
        logger.exception(f"Error searching for '{request.query}': {e}")
        return search_fallback_response(request.query)

    return SearchResponse(success=True, message="Search completed successfully", data=data)


@app.get(
    "/api/mobile/search/suggestions",
    response_model=SuggestionsResponse,
    tags=["Search"],
    summary="Get search suggestions",
)
async def search_suggestions(
    q: str = Query("", max_length=MAX_QUERY_LENGTH, description="Partial query"),
    viewer: Optional[Viewer] = Depends(get_current_viewer_optional),
    service: SearchService = Depends(get_search_service),
):
    """Popular searches and location names matching a partial query"""
    suggestions = await service.suggestions(q, viewer)
    return SuggestionsResponse(success=True, data=SuggestionsData(query=q, suggestions=suggestions))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mobile_feed_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
