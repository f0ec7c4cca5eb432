"""
FastAPI application main module.
Wires the settlement scheduler, its background worker and the payment gateway
client into the app, with request logging, error handling and health checks.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
import time
import os
from contextlib import asynccontextmanager
from settlement_system.api.v1 import api_router
from settlement_system.utils import setup_logging, get_logger
from settlement_system.utils.observability import REQUEST_ID_HEADER, ensure_request_id
from settlement_system.config import LOCK_SETTINGS, SCHEDULER_SETTINGS
from settlement_system.database import engine, Base, SessionLocal
from settlement_system.exceptions import GatewayApplicationError, SettlementError
from settlement_system.integrations.payment_gateway import PaymentGatewayClient
from settlement_system.jobs.locks import RedisLockService, create_lock_service
from settlement_system.jobs.settlement_scheduler import create_settlement_scheduler
from settlement_system.jobs.worker_settlement import SettlementWorker
from settlement_system.services.payment_cancellation import PaymentCancellationService

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)

_worker: SettlementWorker | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Application startup initiated")

    global _worker
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        lock_service = create_lock_service(SessionLocal)
        scheduler = create_settlement_scheduler(SessionLocal, lock_service=lock_service)
        # exposed in app state so endpoints reach them without importing main
        app.state.lock_service = lock_service  # type: ignore[attr-defined]
        app.state.settlement_scheduler = scheduler  # type: ignore[attr-defined]
        app.state.cancellation_service = PaymentCancellationService(PaymentGatewayClient(), SessionLocal)  # type: ignore[attr-defined]

        if SCHEDULER_SETTINGS["enabled"]:
            _worker = SettlementWorker(scheduler)
            _worker.start()
            app.state.settlement_worker = _worker  # type: ignore[attr-defined]
            logger.info("Settlement worker started")
        else:
            logger.info("Settlement scheduler disabled; runs only via API trigger")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if _worker:
            _worker.stop()
            logger.info("Settlement worker stop signal sent")
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Partner Settlement Service",
    description="""
    Daily partner settlement and payment gateway operations.

    ## Features
    * **Daily settlement** - Sums the previous day's paid payments per partner
    * **Cluster-safe scheduling** - One instance settles a given day, guarded by a lease lock
    * **Failure tracking** - Partner rows that fail to settle are recorded for remediation
    * **Payment cancellation** - Gateway calls with retry and recovery
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

@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time
    response.headers[REQUEST_ID_HEADER] = request_id
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
            "details": exc.errors(),
            "request_id": request_id
        }
    )

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
            "message": exc.detail,
            "request_id": request_id
        }
    )

@app.exception_handler(GatewayApplicationError)
async def gateway_exception_handler(request: Request, exc: GatewayApplicationError):
    """The payment gateway answered but refused the operation."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Payment gateway rejected request",
        error=str(exc),
        gateway_status=exc.status_code,
        request_id=request_id,
        url=str(request.url)
    )

    return JSONResponse(
        status_code=502,
        content={
            "success": False,
            "message": f"Payment gateway error: {exc}",
            "request_id": request_id
        }
    )

@app.exception_handler(SettlementError)
async def settlement_exception_handler(request: Request, exc: SettlementError):
    """Settlement failures that escaped the job's own result reporting."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Settlement error",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": str(exc),
            "error_type": type(exc).__name__,
            "request_id": request_id
        }
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

# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    lock_backend = str(LOCK_SETTINGS.get("backend", "sql")).lower()
    lock_service = getattr(app.state, "lock_service", None)
    payload = {
        "status": "healthy",
        "service": "settlement-system",
        "version": "1.0.0",
        "timestamp": time.time(),
        "lock_backend": lock_backend,
    }
    if isinstance(lock_service, RedisLockService):
        payload["redis_status"] = "healthy" if lock_service.health_check() else "unavailable"
    return payload

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with database, lock backend and worker status."""
    health_status = {
        "status": "healthy",
        "service": "settlement-system",
        "version": "1.0.0",
        "timestamp": time.time(),
        "checks": {}
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"
    finally:
        db.close()

    lock_service = getattr(app.state, "lock_service", None)
    if isinstance(lock_service, RedisLockService):
        healthy = lock_service.health_check()
        health_status["checks"]["redis"] = "healthy" if healthy else "unavailable"
        if not healthy:
            health_status["status"] = "degraded"

    worker = getattr(app.state, "settlement_worker", None)
    if worker is not None:
        last = worker.last_result
        health_status["checks"]["settlement_worker"] = {
            "running": worker.is_running,
            "last_status": last.status.value if last else None,
            "last_settlement_date": last.settlement_date.isoformat() if last and last.settlement_date else None,
        }

    return health_status

@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Partner Settlement Service API",
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
        "settlement_system.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["settlement_system"],
        log_level="info",
        access_log=True
    )
