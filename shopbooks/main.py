from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shopbooks.config import settings
from shopbooks.api.v1.router import api_router
from shopbooks.core.exceptions import ShopBooksError
from shopbooks.database import init_db, async_session_factory


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - SQLite (local runs): create tables directly
    - PostgreSQL: schema is owned by Alembic (`alembic upgrade head`)
    """
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)
    if settings.DATABASE_URL.startswith("sqlite"):
        await init_db()

    yield

    logger.info("Shutting down...")


API_DESCRIPTION = """
## ShopBooks Invoice Engine

GST invoicing for small businesses: sales, sales orders, purchases and
purchase orders with server-side tax computation, atomic document numbering,
payment tracking and exactly-once conversions.

### Conventions

- JSON bodies use camelCase keys.
- Pass the acting user in the `X-Actor-Id` header; it is recorded on every write.
- Money is returned as decimal strings with two places.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Validation failed or the document state does not allow the operation |
| 404 | Document, party, item or company not found |
| 409 | Concurrent write conflict (already retried once) |
| 422 | Request body could not be parsed |
| 502 | Inventory service failure |
| 500 | Internal error; nothing was committed |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
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
)

# Include API router
app.include_router(api_router)


def error_response(request: Request, status_code: int, body: dict) -> JSONResponse:
    body = {**body, "path": str(request.url.path), "method": request.method}
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ShopBooksError)
async def shopbooks_exception_handler(request: Request, exc: ShopBooksError):
    """Map engine errors to their status code and a structured body."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return error_response(request, exc.status_code, exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Anything unexpected is a 500 with the same body shape."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(request, 500, {
        "error": str(exc),
        "type": type(exc).__name__,
        "code": "INTERNAL_ERROR",
    })


# Health check endpoint
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

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except SQLAlchemyError as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
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
    }
