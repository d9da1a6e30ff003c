"""
Chat History Service - Main FastAPI Application
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import settings
from .api import sessions_router
from .core import init_history_service, get_history_service
from .core.logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .storage import create_document_store

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    setup_logging(settings)

    store = create_document_store(settings)
    init_history_service(store)
    logger.info("Chat history service initialized")

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Store backend: {settings.store_backend}")
    logger.info(f"Session cache TTL: {settings.cache_ttl_seconds}s")
    logger.info(f"Log level: {settings.log_level.upper()}")
    yield
    # Shutdown: drop live feeds and cached pages
    get_history_service().cleanup()
    logger.info(f"Shutting down {settings.app_name}")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Conversation history for the Islamic AI assistant: cached, paginated, live-synced",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware (after CORS)
if settings.log_api_requests:
    app.add_middleware(RequestLoggingMiddleware)

app.include_router(sessions_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "store": settings.store_backend,
        "version": settings.app_version
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "chat_history.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
