"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from issuemirror.api import dashboard, issues, mirror
from issuemirror.config import settings
from issuemirror.models.base import init_db
from issuemirror.scheduler import scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Issue Mirror Service")
    init_db()
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping Issue Mirror Service")
    scheduler.stop()


app = FastAPI(
    title="Issue Mirror Service",
    description="Mirror canonical issues into GitHub or GitLab and reconcile their status",
    version="1.0.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(issues.router)
app.include_router(mirror.router)
app.include_router(dashboard.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Issue Mirror"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "issuemirror.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
