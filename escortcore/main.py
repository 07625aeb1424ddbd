"""
FastAPI application main module.
Wires the marketplace core (dispatch, settlement, outbox, sweep) behind a thin HTTP surface.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
import time
import uuid
import os
from contextlib import asynccontextmanager
from escortcore import database
from escortcore.api.v1 import api_router
from escortcore.container import build_container
from escortcore.database import Base
from escortcore.jobs.worker_outbox import LAST_FAILURES
from escortcore.utils import setup_logging, get_logger

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/escortcore.log"),
    enable_console=True
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Creates tables, builds the service container and starts the background threads.
    """
    logger.info("Application startup initiated")

    container = getattr(app.state, "container", None)
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=database.engine)
        logger.info("Database tables created successfully")

        if container is None:
            container = build_container()
            app.state.container = container  # type: ignore[attr-defined]
        container.start()
        logger.info("Outbox worker and sweep scheduler started")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if container is not None:
            container.stop()
            logger.info("Background services stop signal sent")
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Escort Marketplace Core",
    description="""
    Dispatch and settlement core of the escort marketplace.

    ## Features
    * **Claim arbitration** - exactly one provider wins a paid job
    * **Scored auto-assignment** - rating, experience, venue familiarity and distance
    * **Commission settlement** - idempotent wallet credit with debt offsetting
    * **Refund clawback** - balance deduction with debt for the shortfall
    * **Overdue sweep** - automatic assignment of jobs nobody claimed
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

# CORS middleware - configure appropriately for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# Request ID and request/response logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

# Custom exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
            "request_id": request_id
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry exception instances that JSONResponse cannot encode
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions. Dict details carry a message plus structured reason fields."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    content = {"success": False, "message": exc.detail, "request_id": request_id}
    if isinstance(exc.detail, dict):
        content["message"] = exc.detail.get("message", "Request failed")
        content["details"] = {k: v for k, v in exc.detail.items() if k != "message"}
    return JSONResponse(status_code=exc.status_code, content=content)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    container = getattr(app.state, "container", None)
    backend = container.queue.snapshot().get("backend") if container is not None else None
    return {
        "status": "healthy",
        "service": "escort-marketplace-core",
        "version": "1.0.0",
        "timestamp": time.time(),
        "outbox_backend": backend,
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with database, outbox and sweep status."""
    health_status = {
        "status": "healthy",
        "service": "escort-marketplace-core",
        "version": "1.0.0",
        "timestamp": time.time(),
        "checks": {}
    }

    try:
        db = database.SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    container = getattr(app.state, "container", None)
    if container is None:
        health_status["checks"]["container"] = "not initialized"
        health_status["status"] = "degraded"
        return health_status

    snap = container.queue.snapshot()
    health_status["checks"]["outbox"] = {
        k: v for k, v in snap.items() if k in {"backend", "depth", "ready", "scheduled", "dropped", "redis_active"}
    }
    health_status["checks"]["outbox"]["recent_failures"] = len(LAST_FAILURES)
    if snap.get("backend") == "redis" and not snap.get("redis_active", False):
        health_status["status"] = "degraded"

    scheduler = container.scheduler
    if scheduler is None:
        health_status["checks"]["sweep"] = "disabled"
    else:
        last = scheduler.last_report
        health_status["checks"]["sweep"] = last.as_dict() if last is not None else "pending"

    return health_status

@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Escort Marketplace Core API",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

app.include_router(api_router, prefix="/api/v1")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "escortcore.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["escortcore"],
        log_level="info",
        access_log=True
    )
