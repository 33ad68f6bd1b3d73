"""
Drive Proxy - Backend API
FastAPI service that lists, searches and streams files from several Google
Drive accounts without exposing their credentials to the caller.

Install dependencies:
pip install -e .

Run server:
uvicorn main:app --host 0.0.0.0 --port 8000   (from services/api)
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
import contextvars
import logging
import os
import time
import uuid

from core.errors import ProxyError
from dependencies import close_http_client
from schemas import HealthCheck
from settings import get_settings

APP_VERSION = "1.0"

# ========== Request Context for Tracing ==========
request_id_var = contextvars.ContextVar('request_id', default=None)

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Drive Proxy API",
    description="Multi-account Google Drive listing, search and streaming proxy",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)


# ========== Request Tracing Middleware ==========
@app.middleware("http")
async def request_tracing_middleware(request, call_next):
    """Add request_id and timing to all requests; last line of defence for errors."""
    request_id = str(uuid.uuid4())[:8]
    request_id_var.set(request_id)
    start = time.time()

    # CORS preflights never get here (CORSMiddleware answers them); any
    # other OPTIONS request is short-circuited with an empty response
    if request.method == "OPTIONS":
        response = Response(status_code=status.HTTP_204_NO_CONTENT)
        response.headers["X-Request-ID"] = request_id
        return response

    try:
        response = await call_next(request)
    except Exception as exc:
        # Nothing unformatted leaves the service
        logger.error(f"Unhandled exception [{request_id}]: {exc}", exc_info=True)
        response = JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error"},
        )

    latency = time.time() - start
    logger.info(
        "%s %s -> %s (%.2f ms) [%s]",
        request.method,
        request.url.path,
        response.status_code,
        latency * 1000,
        request_id,
    )

    response.headers["X-Request-ID"] = request_id
    return response


def cors_options(origins):
    """CORSMiddleware settings; browsers refuse credentials with a wildcard origin."""
    return {
        "allow_origins": origins,
        "allow_credentials": "*" not in origins,
        "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization", "Range"],
        "expose_headers": ["Content-Range", "Accept-Ranges", "Content-Length", "X-Request-ID"],
    }


ALLOWED_ORIGINS = settings.get_origins_list()

app.add_middleware(CORSMiddleware, **cors_options(ALLOWED_ORIGINS))


# ========== Error envelope ==========

@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Bad Request", "details": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers=getattr(exc, "headers", None),
    )


# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/", response_class=PlainTextResponse)
async def root():
    """API root endpoint"""
    return "Drive Proxy Backend is running."


@app.get("/healthz", response_model=HealthCheck)
async def healthz():
    """Liveness probe: the process is up and answering."""
    return {
        "status": "ok",
        "backend": settings.storage_backend,
        "version": APP_VERSION,
    }


from routers import auth as auth_router
app.include_router(auth_router.router)

from routers import accounts as accounts_router
app.include_router(accounts_router.router)

from routers import drive as drive_router
app.include_router(drive_router.router)


@app.on_event("startup")
async def startup_event():
    logger.info("Drive Proxy API starting up...")
    logger.info(f"Storage Backend: {settings.storage_backend.upper()}")
    logger.info(f"Allowed origins: {ALLOWED_ORIGINS}")
    if not settings.admin_token:
        logger.warning("ADMIN_TOKEN is not set; settings endpoints will reject every request")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Drive Proxy API shutting down...")
    await close_http_client()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run("main:app", host="0.0.0.0", port=port)
