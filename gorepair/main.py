"""
GoRepair Backend - Main FastAPI Application
"""
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging
import os

from gorepair.config import settings
from gorepair.exceptions import GoRepairError
from gorepair.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from gorepair.api.v1 import bulk_bookings, bookings, technicians

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events
    """
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Matching radius: {settings.MATCHING_RADIUS_KM} km, OTP TTL: {settings.OTP_TTL_MINUTES} min")

    yield

    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="On-demand repair bookings: technician matching, arrival verification and job tracking",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan,
    debug=settings.DEBUG
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# ============================================================================
# MIDDLEWARE
# ============================================================================

logger.info(f"CORS configured for origins: {settings.CORS_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,  # Specific origins (required for credentials)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Trusted Host Middleware (security)
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.ALLOWED_HOSTS
)


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/")
async def root():
    """
    Root endpoint - API status
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring
    """
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT
    }


# Bulk routes first so /bookings/bulk/{id} is not taken for a booking id
app.include_router(
    bulk_bookings.router,
    prefix=f"{settings.API_V1_PREFIX}/bookings/bulk",
    tags=["Bulk Bookings"]
)

app.include_router(
    bookings.router,
    prefix=f"{settings.API_V1_PREFIX}/bookings",
    tags=["Bookings"]
)

app.include_router(
    technicians.router,
    prefix=f"{settings.API_V1_PREFIX}/technicians",
    tags=["Technicians"]
)


# ============================================================================
# STATIC FILES (job evidence uploads)
# ============================================================================

os.makedirs(settings.UPLOAD_BASE_DIR, exist_ok=True)
app.mount(settings.STATIC_URL_PREFIX, StaticFiles(directory=settings.UPLOAD_BASE_DIR), name="static")
logger.info(f"Static files mounted at {settings.STATIC_URL_PREFIX} from {settings.UPLOAD_BASE_DIR}")


# ============================================================================
# ERROR HANDLERS
# ============================================================================

def error_response(status_code: int, message: str, data=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "status_code": status_code,
            "success": False,
            "message": message,
            "data": jsonable_encoder(data)
        }
    )


@app.exception_handler(GoRepairError)
async def domain_error_handler(request: Request, exc: GoRepairError):
    """
    Domain errors carry their own status code and optional data
    """
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.data)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # ctx may hold the raised exception object, which is not serializable
    errors = [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request", {"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    response = error_response(exc.status_code, str(exc.detail))
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    """
    Optimistic concurrency: the booking changed since it was read
    """
    logger.warning(f"Concurrent modification on {request.method} {request.url.path}: {exc}")
    return error_response(status.HTTP_409_CONFLICT, "Booking was modified by another request. Please retry")


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return error_response(status.HTTP_409_CONFLICT, "Request conflicts with the current state of the resource")


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    """
    Custom 500 handler
    """
    logger.exception(f"Internal server error on {request.method} {request.url.path}: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred. Please try again later.")


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gorepair.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
