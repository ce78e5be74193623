"""FastAPI application entry point - DisputeFlow"""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from disputeflow.config import settings, validate_settings
from disputeflow.core.logging import log, setup_logging
from disputeflow.core.exceptions import AppException
from disputeflow.api.dependencies import get_scheduler
from disputeflow.api.routes import admin, disputes, evidence
from disputeflow.tasks.background import drain


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    setup_logging(debug=settings.DEBUG, log_format=settings.LOG_FORMAT)
    log.info(f"Starting {settings.APP_NAME}...")
    validate_settings()
    log.info(f"Environment: {settings.current_env}")

    scheduler = get_scheduler()
    if settings.get("SCHEDULER_ENABLED", True):
        scheduler.start()

    yield

    log.info("Shutting down...")
    await scheduler.stop()
    await drain(timeout=10)


app = FastAPI(
    title=settings.APP_NAME,
    description="Three-phase escrow dispute resolution for service bookings",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Log all requests."""
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()
    request.state.request_id = request_id

    with log.contextualize(request_id=request_id):
        log.info(
            "Request started",
            method=request.method,
            path=request.url.path,
        )
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        log.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

    return response


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Handle application exceptions."""
    if exc.status_code >= 500:
        log.warning(f"{exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code, "details": exc.details},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions, invariant violations included."""
    log.exception("Unhandled exception")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


# Routes
app.include_router(disputes.router, prefix=f"{settings.API_PREFIX}/disputes", tags=["disputes"])
app.include_router(evidence.router, prefix=f"{settings.API_PREFIX}/disputes", tags=["evidence"])
app.include_router(admin.router, prefix=f"{settings.API_PREFIX}/admin", tags=["admin"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.APP_NAME}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs" if settings.DEBUG else None,
    }
