"""
FastAPI application entry point for the clinical asset browser.

Provides REST API for:
- Filtered, sorted, paginated asset queries
- Asset detail with comments
- Site → Subject → Event → Procedure → Asset hierarchy listings
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from asset_api import __version__
from asset_api.config import settings
from asset_api.db import init_schema


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),
    ]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting asset browser application...")

    if settings.database_url:
        try:
            init_schema()
            logger.info("Database schema initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database schema: {e}")
            raise
    else:
        logger.warning("DATABASE_URL is not set - skipping schema initialization")

    yield

    # Shutdown
    logger.info("Shutting down asset browser application...")


# Create FastAPI application
app = FastAPI(
    title="Clinical Asset Browser",
    description="Filtered asset queries and lazy hierarchy browsing for clinical trial media",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Render errors as {success: false, error}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
    }


# Import and include routers
from asset_api.routers import assets, sites
app.include_router(assets.router, prefix="/api/v1", tags=["assets"])
app.include_router(sites.router, prefix="/api/v1", tags=["sites"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "asset_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
