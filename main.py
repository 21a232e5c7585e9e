"""
main.py: DeedChain Entry Point
================================
This is the file you run to start the API and its job workers.
Startup, in order:
    1. Creates the database tables
    2. Prepares the JWT / signature engine
    3. Connects the blockchain and IPFS backends
    4. Starts the background job queues

Run with:
    uvicorn main:app --reload --host 0.0.0.0 --port 5000

Or simply:
    python main.py
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings

# ── Database ──────────────────────────────────────────────────────────────────
from db.session import init_db

# ── Core systems ──────────────────────────────────────────────────────────────
from core.blockchain import blockchain
from core.crypto import crypto_engine
from core.errors import ApiError, DeedChainError, ErrorCode
from core.ipfs import ipfs
from core.middleware import RateLimitMiddleware, RequestLogMiddleware
from modules.jobs import queue_service

# ── API Routers (one per module) ──────────────────────────────────────────────
from api.routes_users import router as users_router
from api.routes_properties import router as properties_router
from api.routes_verifications import router as verifications_router
from api.routes_transfers import router as transfers_router
from api.routes_admin import router as admin_router
from api.routes_errors import router as errors_router


# ── Logging setup ─────────────────────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    handlers=[
        logging.StreamHandler(),                          # print to terminal
        logging.FileHandler(settings.LOG_FILE),           # also save to file
    ],
)
logger = logging.getLogger("deedchain.main")


# ── Lifespan: runs on startup and shutdown ────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    await init_db()
    logger.info("✓ Database ready")

    crypto_engine.initialize()
    logger.info("✓ Crypto engine ready")

    await blockchain.connect()
    logger.info(f"✓ Blockchain connected (backend: {settings.BLOCKCHAIN_BACKEND})")

    await ipfs.connect()
    logger.info(f"✓ IPFS ready (backend: {settings.IPFS_BACKEND})")

    await queue_service.start()
    logger.info(f"✓ Job queues running (backend: {settings.QUEUE_BACKEND})")

    logger.info("=" * 50)
    logger.info(f"  {settings.APP_NAME} is LIVE on port {settings.PORT}")
    logger.info(f"  Client URL: {settings.CLIENT_URL}")
    logger.info("=" * 50)

    yield

    logger.info("Shutting down, closing connections...")
    await queue_service.close()
    await ipfs.close()
    await blockchain.disconnect()
    logger.info("✓ Shutdown complete")


# ── Create the FastAPI app ────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Land property registration, verification and transfer backed by deed NFTs and IPFS",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# ── Middleware ─────────────────────────────────────────────────────────────────
# Added last runs first: CORS → rate limit → access log → routes
app.add_middleware(RequestLogMiddleware)
if settings.RATE_LIMIT_MAX > 0:
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.RATE_LIMIT_MAX,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        trust_proxy_headers=settings.TRUST_PROXY_HEADERS,
        trusted_proxies=tuple(settings.TRUSTED_PROXY_IPS),
    )
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security: only accept requests from known hosts in production
if settings.ENVIRONMENT == "production":
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)


# ── Error envelope ────────────────────────────────────────────────────────────
def error_response(status_code: int, message: str, code: ErrorCode) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "code": code.value},
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return error_response(exc.status_code, exc.detail, exc.code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        prefix = "API route" if request.url.path.startswith("/api") else "Route"
        return error_response(404, f"{prefix} {request.url.path} not found", ErrorCode.UNKNOWN_ERROR)
    code = {
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
    }.get(exc.status_code, ErrorCode.UNKNOWN_ERROR)
    return error_response(exc.status_code, str(exc.detail), code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return error_response(400, "Invalid input provided", ErrorCode.INVALID_INPUT)
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    code = ErrorCode.MISSING_REQUIRED_FIELD if first.get("type") == "missing" else ErrorCode.INVALID_INPUT
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return error_response(400, message, code)


@app.exception_handler(DeedChainError)
async def service_error_handler(request: Request, exc: DeedChainError):
    logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return error_response(500, exc.message, exc.code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "Internal server error", ErrorCode.UNKNOWN_ERROR)


# ── Register all routers ──────────────────────────────────────────────────────
app.include_router(users_router,         prefix="/api/users",         tags=["Users"])
app.include_router(properties_router,    prefix="/api/properties",    tags=["Properties"])
app.include_router(verifications_router, prefix="/api/verifications", tags=["Verifications"])
app.include_router(transfers_router,     prefix="/api/transfers",     tags=["Transfers"])
app.include_router(admin_router,         prefix="/api/admin",         tags=["Admin"])
app.include_router(errors_router,        prefix="/api/errors",        tags=["Client Errors"])


# ── Service endpoints ─────────────────────────────────────────────────────────
@app.get("/health", tags=["Status"])
async def health():
    return {
        "status": "OK",
        "timestamp": datetime.utcnow().isoformat(),
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/api", tags=["Status"])
async def api_root():
    return {
        "success": True,
        "message": "DeedChain API Server",
        "version": settings.APP_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "endpoints": {
            "users": "/api/users",
            "properties": "/api/properties",
            "verifications": "/api/verifications",
            "transfers": "/api/transfers",
            "admin": "/api/admin",
        },
    }


@app.get("/", include_in_schema=False)
async def root():
    return RedirectResponse(url="/api")


# ── Run directly ──────────────────────────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
