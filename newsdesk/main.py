"""
FastAPI main application for the newsdesk service.
Provides REST endpoints for topic tabs, API key management and streamed news summaries.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any
from datetime import datetime

from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from newsdesk import __version__
from newsdesk.utils.config import settings
from newsdesk.utils.crypto import encrypt_api_key
from newsdesk.db.postgres import init_database, close_database, health_check_db, get_db_session
from newsdesk.db.repositories import TabRepository, ApiKeyRepository
from newsdesk.ai.news_stream import NewsStreamer, get_news_streamer, resolve_api_key
from newsdesk.auth import AuthenticatedUser, get_current_user
from newsdesk.errors import NewsdeskError, ValidationFailed

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Pydantic models for API requests and responses
class NewsRequestModel(BaseModel):
    """Request model for a streamed news summary."""
    model_config = ConfigDict(populate_by_name=True)

    topic: Optional[str] = Field(default=None, description="Topic to summarize")
    tab_id: Optional[str] = Field(default=None, alias="tabId", description="Tab the request belongs to")


class TabCreateModel(BaseModel):
    """Request model for creating a tab."""
    topic: Optional[str] = Field(default=None, description="Tab topic")


class TabUpdateModel(BaseModel):
    """Request model for a partial tab update. Only fields present are applied."""
    model_config = ConfigDict(populate_by_name=True)

    tab_id: Optional[str] = Field(default=None, alias="tabId", description="Tab to update")
    topic: Optional[str] = Field(default=None, description="New topic")
    last_refreshed_at: Optional[datetime] = Field(
        default=None, alias="lastRefreshedAt", description="Time of the last news refresh"
    )


class ApiKeyModel(BaseModel):
    """Request model for storing a provider API key."""
    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(default=None, alias="apiKey", description="Perplexity API key")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    database: bool
    timestamp: datetime


# Application lifecycle
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting newsdesk API...")
    try:
        await init_database()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down newsdesk API...")
    try:
        await close_database()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Database cleanup failed: {e}")


# Create FastAPI application
app = FastAPI(
    title="Newsdesk API",
    description="Topic tabs with streamed AI news summaries",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_tab_repository(session: AsyncSession = Depends(get_db_session)) -> TabRepository:
    return TabRepository(session)


def get_api_key_repository(session: AsyncSession = Depends(get_db_session)) -> ApiKeyRepository:
    return ApiKeyRepository(session)


@app.get("/", response_model=Dict[str, str])
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Newsdesk API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    db_healthy = await health_check_db()
    return HealthResponse(
        status="healthy" if db_healthy else "unhealthy",
        database=db_healthy,
        timestamp=datetime.now()
    )


@app.post("/news")
async def stream_news(
    request: NewsRequestModel,
    user: AuthenticatedUser = Depends(get_current_user),
    api_keys: ApiKeyRepository = Depends(get_api_key_repository),
    streamer: NewsStreamer = Depends(get_news_streamer),
) -> StreamingResponse:
    """
    Stream a news summary for a topic as plain text.
    Setup errors are returned as JSON before any byte of the stream is sent.
    """
    topic = (request.topic or "").strip()
    if not topic:
        raise ValidationFailed("Topic is required")

    api_key = await resolve_api_key(user.id, api_keys)
    chunks = await streamer.open_stream(topic, api_key)
    logger.info(f"Streaming news for user {user.id} (tab={request.tab_id})")

    return StreamingResponse(
        chunks,
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )


@app.get("/tabs", response_model=Dict[str, Any])
async def list_tabs(
    user: AuthenticatedUser = Depends(get_current_user),
    tabs: TabRepository = Depends(get_tab_repository),
) -> Dict[str, Any]:
    """List the caller's tabs in display order."""
    rows = await tabs.list_tabs(user.id)
    return {"tabs": [tab.to_dict() for tab in rows]}


@app.post("/tabs", status_code=201, response_model=Dict[str, Any])
async def create_tab(
    request: TabCreateModel,
    user: AuthenticatedUser = Depends(get_current_user),
    tabs: TabRepository = Depends(get_tab_repository),
) -> Dict[str, Any]:
    """Create a tab at the end of the caller's tab list."""
    if not request.topic:
        raise ValidationFailed("Invalid topic")

    tab = await tabs.create_tab(user.id, request.topic)
    return {"tab": tab.to_dict()}


@app.patch("/tabs", response_model=Dict[str, Any])
async def update_tab(
    request: TabUpdateModel,
    user: AuthenticatedUser = Depends(get_current_user),
    tabs: TabRepository = Depends(get_tab_repository),
) -> Dict[str, Any]:
    """Update the topic and/or refresh timestamp of one of the caller's tabs."""
    if not request.tab_id:
        raise ValidationFailed("Tab ID required")
    if "topic" in request.model_fields_set and request.topic is None:
        raise ValidationFailed("Invalid topic")

    fields = {
        name: getattr(request, name)
        for name in ("topic", "last_refreshed_at")
        if name in request.model_fields_set
    }
    tab = await tabs.update_tab(user.id, request.tab_id, fields)
    return {"tab": tab.to_dict()}


@app.delete("/tabs", response_model=Dict[str, Any])
async def delete_tab(
    tab_id: Optional[str] = Query(default=None, alias="tabId", description="Tab to delete"),
    user: AuthenticatedUser = Depends(get_current_user),
    tabs: TabRepository = Depends(get_tab_repository),
) -> Dict[str, Any]:
    """Delete one of the caller's tabs."""
    if not tab_id:
        raise ValidationFailed("Tab ID required")

    await tabs.delete_tab(user.id, tab_id)
    return {"success": True}


@app.get("/user/api-key", response_model=Dict[str, bool])
async def get_api_key_status(
    user: AuthenticatedUser = Depends(get_current_user),
    api_keys: ApiKeyRepository = Depends(get_api_key_repository),
) -> Dict[str, bool]:
    """Report whether the caller has an API key on file. Never returns the key."""
    return {"hasApiKey": await api_keys.has_api_key(user.id)}


@app.post("/user/api-key", response_model=Dict[str, bool])
async def save_api_key(
    request: ApiKeyModel,
    user: AuthenticatedUser = Depends(get_current_user),
    api_keys: ApiKeyRepository = Depends(get_api_key_repository),
) -> Dict[str, bool]:
    """Encrypt and store the caller's API key, replacing any previous one."""
    if not request.api_key or not request.api_key.strip():
        raise ValidationFailed("Invalid API key")

    await api_keys.upsert_api_key(user.id, encrypt_api_key(request.api_key))
    return {"success": True}


@app.delete("/user/api-key", response_model=Dict[str, bool])
async def delete_api_key(
    user: AuthenticatedUser = Depends(get_current_user),
    api_keys: ApiKeyRepository = Depends(get_api_key_repository),
) -> Dict[str, bool]:
    """Remove the caller's stored API key."""
    await api_keys.delete_api_key(user.id)
    return {"success": True}


# Error handlers
@app.exception_handler(NewsdeskError)
async def newsdesk_exception_handler(request: Request, exc: NewsdeskError):
    """Handle service errors."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.public_message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.public_message}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies and parameters."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"Invalid {location}: {errors[0].get('msg')}" if location else errors[0].get("msg", message)
    return JSONResponse(
        status_code=400,
        content={"error": message}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


if __name__ == "__main__":
    uvicorn.run(
        "newsdesk.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
