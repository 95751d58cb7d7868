"""FastAPI application setup."""

import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from src.db.database import init_db
from src.api.routes import auth, zerodha
from src.core.brokers.exceptions import BrokerLinkError, InvalidInput
from src.config import PRODUCT_NAME, PRODUCT_TAGLINE, PRODUCT_VERSION, PRODUCT_DESCRIPTION

logger = logging.getLogger(__name__)

# Rate limiter - key by IP address
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title=f"{PRODUCT_NAME} API",
    description=PRODUCT_DESCRIPTION,
    version=PRODUCT_VERSION,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(BrokerLinkError)
def broker_link_error_handler(request: Request, exc: BrokerLinkError):
    """Render broker link errors as `{success: false, error, code, ...hints}`."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")

    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}

    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code, **exc.hints},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Broker routes answer malformed input with the InvalidInput envelope."""
    if not request.url.path.startswith("/api/zerodha/"):
        return await request_validation_exception_handler(request, exc)

    logger.info(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
    return broker_link_error_handler(request, InvalidInput())


@app.on_event("startup")
def startup():
    """Initialize database on startup."""
    init_db()


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "name": PRODUCT_NAME,
        "version": PRODUCT_VERSION,
        "status": "ok",
        "tagline": PRODUCT_TAGLINE,
    }


# Mount API routers
app.include_router(auth.router, prefix="/api", tags=["auth"])
app.include_router(zerodha.router, prefix="/api", tags=["zerodha"])
