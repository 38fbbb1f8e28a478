# Essential imports
import time
from fastapi import FastAPI, Request, status, HTTPException
from fastapi.exceptions import RequestValidationError
from routers import checkout
from contextlib import asynccontextmanager

# Import all models for SQLAlchemy relationship resolution
import models  # This triggers the imports in models/__init__.py

# Rate limiter imports
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from middleware.rate_limiter import limiter

# Logging imports
from core.logging_config import setup_logging, get_logger
from middleware import RequestIDMiddleware, get_request_id
from core.config import settings
from fastapi.responses import JSONResponse

# Database and payment gateway
from core.database import Base, engine
from services.wompi_gateway import WompiGateway

# CORS imports
from fastapi.middleware.cors import CORSMiddleware

# Initialize logging
setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    # Tests install their own gateway before the app starts
    if getattr(app.state, "payment_gateway", None) is None:
        app.state.payment_gateway = WompiGateway.from_settings(settings)
    logger.info("Application startup complete", extra={"event": "startup"})
    yield
    gateway = app.state.payment_gateway
    if isinstance(gateway, WompiGateway):
        await gateway.aclose()
    logger.info("Application shutting down", extra={"event": "shutdown"})


app = FastAPI(
    title="Checkout API",
    description="Order creation and payment reconciliation",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


QUIET_PATHS = {"/health"}


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    One access-log line per request; 5xx responses are logged as warnings.
    """
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start) * 1000, 2)

    client_ip = request.client.host if request.client else "unknown"
    log_data = {
        "method": request.method,
        "path": request.url.path,
        "status_code": response.status_code,
        "duration_ms": duration_ms,
        "client_ip": client_ip
    }
    line = f'{client_ip} - "{request.method} {request.url.path}" {response.status_code} ({duration_ms}ms)'

    if response.status_code >= 500:
        logger.warning(line, extra=log_data)
    elif request.url.path in QUIET_PATHS:
        logger.debug(line, extra=log_data)
    else:
        logger.info(line, extra=log_data)

    return response


# Added last so it wraps the logging middleware and the id is set first
app.add_middleware(RequestIDMiddleware)


@app.get("/health")
async def health_check():
    return {"status": "Healthy"}


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Last resort for anything a pipeline step did not turn into a Failure.
    The client gets a generic 500 plus the request id to quote.
    """
    if isinstance(exc, (HTTPException, RequestValidationError)):
        raise exc

    request_id = get_request_id(request)
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "request_id": request_id
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error", "request_id": request_id},
        headers={"X-Request-ID": request_id}
    )


app.include_router(checkout.router)


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
