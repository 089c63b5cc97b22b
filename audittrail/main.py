import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from audittrail.core.config import settings
from audittrail.api.v1 import api_router
from audittrail.middleware.audit import AuditContextMiddleware
from audittrail.middleware.monitoring import MonitoringMiddleware, configure_structured_logging

# Configure structured logging
if settings.ENABLE_STRUCTURED_LOGGING:
    configure_structured_logging(
        log_level="DEBUG" if settings.DEBUG else "INFO",
        json_format=not settings.DEBUG  # Use JSON in production, plain text in debug
    )
else:
    logging.basicConfig(
        level=logging.INFO if not settings.DEBUG else logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events for the FastAPI application.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if settings.AUDIT_REQUIRE_AUTHORITATIVE_WRITE:
        logger.info("Authoritative audit writes required: failed audit writes abort privileged actions")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Audit trail for privileged administrative actions",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Audit context middleware (reads the request id set by monitoring)
app.add_middleware(AuditContextMiddleware)

# Monitoring middleware (outermost - runs first)
app.add_middleware(MonitoringMiddleware)

# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "audittrail.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
