"""
FastAPI application main module.
Wires logging, persistence, the reconciliation worker and scheduler, middleware and error handling.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid
import os
from contextlib import asynccontextmanager

from invoice_recon.api.v1 import api_router
from invoice_recon.config import LOG_FILE, LOG_LEVEL, SCHEDULER_SETTINGS
from invoice_recon.database import Base, SessionLocal, engine
from invoice_recon.exceptions import ReconciliationValidationError, RunInProgressError
from invoice_recon.jobs.queue import RunQueue
from invoice_recon.jobs.run_lock import RunLock
from invoice_recon.jobs.scheduler_loop import SchedulerLoop
from invoice_recon.jobs.worker_reconciliation import ReconciliationWorker
from invoice_recon.repositories.report_repository import ReportRepository
from invoice_recon.repositories.settings_repository import SettingsRepository
from invoice_recon.services.reconciliation_engine import ReconciliationEngine
from invoice_recon.utils import setup_logging, get_logger

# Setup logging before creating the app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE, enable_console=True)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Creates tables, then starts the worker and (if enabled) the scheduler; stops both on shutdown.
    """
    logger.info("Application startup initiated")
    worker: ReconciliationWorker | None = None
    scheduler: SchedulerLoop | None = None
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        run_lock = RunLock()
        queue = RunQueue()
        reports = ReportRepository(SessionLocal)
        settings_repo = SettingsRepository(SessionLocal)

        # expose shared state for dependencies without importing main (avoids circular imports)
        app.state.run_lock = run_lock
        app.state.reconciliation_queue = queue

        worker = ReconciliationWorker(queue, ReconciliationEngine.from_config(SessionLocal, run_lock=run_lock), settings_repo)
        worker.start()
        if SCHEDULER_SETTINGS["enabled"]:
            scheduler = SchedulerLoop(queue, reports, settings_repo)
            scheduler.start()
        else:
            logger.info("Scheduler disabled; automatic runs will not be enqueued")
        logger.info("Application startup completed successfully", run_lock_backend=run_lock.backend)
        yield
    finally:
        logger.info("Application shutdown initiated")
        if scheduler:
            scheduler.stop()
        if worker:
            worker.stop()
        queue = getattr(app.state, "reconciliation_queue", None)
        if queue is not None:
            queue.shutdown()
        logger.info("Application shutdown completed")


app = FastAPI(
    title="Order/Invoice Reconciliation Service",
    description="""
    Reconciles WooCommerce orders against Zoho Books invoices.

    ## Features
    * **Period reconciliation** - match orders to invoices by reference and classify every mismatch
    * **Report history** - paginated, exportable (CSV), with crashed-run recovery
    * **Scheduling** - daily / weekly / monthly automatic runs with email summaries

    ## Authentication
    When `ADMIN_API_TOKEN` is configured, send it as a bearer token:
    ```
    Authorization: Bearer <token>
    ```
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time_ms = round((time.time() - start_time) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(process_time_ms)
    response.headers["X-Content-Type-Options"] = "nosniff"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=process_time_ms,
        request_id=request_id
    )
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning("Request validation failed", errors=exc.errors(), request_id=request_id, url=str(request.url))
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
            "request_id": request_id
        }
    )


@app.exception_handler(ReconciliationValidationError)
async def reconciliation_validation_handler(request: Request, exc: ReconciliationValidationError):
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(status_code=422, content={"success": False, "message": str(exc), "request_id": request_id})


@app.exception_handler(RunInProgressError)
async def run_in_progress_handler(request: Request, exc: RunInProgressError):
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(status_code=409, content={"success": False, "message": str(exc), "request_id": request_id})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": jsonable_encoder(exc.detail),
            "request_id": request_id
        },
        headers=getattr(exc, "headers", None),
    )


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


@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    queue = getattr(app.state, "reconciliation_queue", None)
    return {
        "status": "healthy",
        "service": "invoice-reconciliation",
        "version": "1.0.0",
        "timestamp": time.time(),
        "queue": queue.snapshot() if queue is not None else None,
    }


@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Order/Invoice Reconciliation API",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }


app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")
    uvicorn.run(
        "invoice_recon.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["invoice_recon"],
        log_level="info",
        access_log=True
    )
