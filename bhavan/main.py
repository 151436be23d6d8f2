from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from bhavan.config import settings
from bhavan.api.v1.router import api_router
from bhavan.core.errors import (
    AppError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    RateLimitError,
    ServiceUnavailableError,
    ValidationError,
    log_error,
    to_error_response,
)
from bhavan.database import init_db, async_session_factory
from bhavan.middleware.request_id import get_request_id, request_id_middleware

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create any missing tables (migrations remain the source of
    truth for production schemas).
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Paid services checkout, payment settlement and affiliate attribution.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

app.middleware("http")(request_id_middleware)

app.include_router(api_router, prefix="/api/v1")


# ==================== EXCEPTION HANDLERS ====================

def _request_context(request: Request) -> dict:
    return {
        "request_id": get_request_id(request),
        "method": request.method,
        "path": str(request.url.path),
        "user_agent": request.headers.get("user-agent"),
    }


def _error_response(request: Request, error: Exception, status_code: int) -> JSONResponse:
    request_id = get_request_id(request)
    response = JSONResponse(
        status_code=status_code,
        content=to_error_response(error, request_id=request_id, include_details=settings.DEBUG),
    )
    response.headers["X-Request-ID"] = request_id
    if isinstance(error, RateLimitError) and error.retry_after is not None:
        response.headers["Retry-After"] = str(error.retry_after)
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    log_error(exc, request_context=_request_context(request))
    return _error_response(request, exc, exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = {}
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", ()) if part != "body"]
        fields[".".join(location) or "body"] = err.get("msg", "Invalid value")
    error = ValidationError("Request validation failed", fields=fields)
    log_error(error, request_context=_request_context(request))
    return _error_response(request, error, error.status_code)


# HTTP status -> taxonomy kind for framework-raised HTTP errors (404 route, 405 ...)
_HTTP_ERROR_KINDS = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    429: RateLimitError,
    503: ServiceUnavailableError,
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    kind = _HTTP_ERROR_KINDS.get(exc.status_code)
    if kind is NotFoundError:
        error = NotFoundError("Resource")
    elif kind is not None:
        error = kind(str(exc.detail))
    else:
        error = AppError(str(exc.detail))
    log_error(error, request_context=_request_context(request))
    return _error_response(request, error, exc.status_code)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log_error(exc, request_context=_request_context(request))
    return _error_response(request, exc, 500)


# ==================== HEALTH ====================

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check database probe failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = "error"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
