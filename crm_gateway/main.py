import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from crm_gateway.api.v1.router import api_router
from crm_gateway.core.auth import client_ip
from crm_gateway.core.config import settings
from crm_gateway.core.database import AsyncSessionLocal, db_manager
from crm_gateway.core.exceptions import AppError
from crm_gateway.core.logging import get_logger, setup_logging
from crm_gateway.core.redis_client import redis_client
from crm_gateway.middleware.api_key_audit import ApiKeyAuditMiddleware
from crm_gateway.middleware.csrf import CSRFMiddleware
from crm_gateway.middleware.logging import LoggingMiddleware
from crm_gateway.middleware.maintenance import MaintenanceModeMiddleware
from crm_gateway.middleware.rate_limit import RateLimitMiddleware
from crm_gateway.services.cron_job_state import cron_job_state
from crm_gateway.services.errors_service import ErrorsService

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    # Startup: a missing database or Redis degrades the app instead of stopping it
    try:
        await db_manager.create_tables()
    except Exception as e:
        logger.error(f"Database table creation failed: {e}")

    try:
        await redis_client.connect()
    except Exception as e:
        logger.error(f"Redis connection failed at startup: {e}")

    try:
        async with AsyncSessionLocal() as session:
            await cron_job_state.load(session)
    except Exception as e:
        logger.error(f"Cron job state hydration failed: {e}")
        cron_job_state.use_defaults()

    logger.info("CRM Gateway startup completed", environment=settings.ENVIRONMENT, port=settings.PORT)

    yield

    # Shutdown
    try:
        await redis_client.disconnect()
        await db_manager.close_connections()
        logger.info("CRM Gateway shutdown completed")
    except Exception as e:
        logger.error(f"CRM Gateway shutdown failed: {e}")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    **CRM Gateway**: authenticated proxy, job queue and audit trail in front of the CRM API.

    ## Authentication

    - Console users sign in with `POST /auth/login`; the access token is set as the
      httpOnly `auth_token` cookie (an `Authorization: Bearer` header also works).
    - Machine clients call `/v1/salesforce/*` with an `X-API-Key` header and an
      optional `X-Environment` header.
    - State-changing console requests must echo the `csrf-token` cookie in `X-CSRF-Token`.
    """,
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Added innermost first: CORS wraps everything, the API key audit sits next to the routes
app.add_middleware(ApiKeyAuditMiddleware)
app.add_middleware(CSRFMiddleware)
app.add_middleware(MaintenanceModeMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=[settings.CSRF_HEADER_NAME],
)

app.include_router(api_router)


def error_response(status_code: int, error, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "status_code": status_code, **extra},
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Domain errors carry their own status code."""
    if exc.details is not None:
        return error_response(exc.status_code, exc.message, details=exc.details)
    return error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """HTTP exception handler."""
    return error_response(exc.status_code, exc.detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(400, "Validation failed", details=jsonable_encoder(exc.errors()))


async def record_unhandled_error(request: Request, exc: Exception):
    """Store an unhandled error in the error log; failures here are only logged."""
    user = getattr(request.state, "user", None)
    try:
        async with AsyncSessionLocal() as session:
            await ErrorsService(session).log_error({
                "message": str(exc) or exc.__class__.__name__,
                "type": "critical",
                "source": "http",
                "environment": settings.ENVIRONMENT,
                "stack_trace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                "user_id": getattr(user, "id", None),
                "user_agent": request.headers.get("user-agent"),
                "ip_address": client_ip(request),
                "url": str(request.url),
                "method": request.method,
                "status_code": 500,
            })
    except Exception as log_error:
        logger.error("Failed to record unhandled error", error=str(log_error))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", path=request.url.path, method=request.method)
    await record_unhandled_error(request, exc)
    return error_response(
        500,
        "Internal server error",
        details=str(exc) if settings.DEBUG else "An unexpected error occurred",
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "crm_gateway.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
