"""
agentvault.security — Shared request plumbing: logging, rate limiting, CORS, validation.

Used by the dashboard API (agentvault.api) and the MCP server.
"""

import logging
import os
import re
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from nacl.exceptions import CryptoError
from nacl.signing import VerifyKey
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from agentvault.errors import ValidationError

# ─── Context var for request ID ────────────────────────────────────

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


# ─── Structured JSON logging ──────────────────────────────────────

class RequestIdFilter(logging.Filter):
    def filter(self, record):
        record.request_id = request_id_var.get("")
        return True


def setup_structured_logging(level: str = "INFO") -> logging.Logger:
    """Configure JSON structured logging with request IDs."""
    from pythonjsonlogger.json import JsonFormatter

    logger = logging.getLogger("agentvault")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        logger.addHandler(handler)

    return logger


logger = setup_structured_logging(os.environ.get("LOG_LEVEL", "INFO"))


# ─── Rate Limiter (slowapi) ───────────────────────────────────────

limiter = Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """429 in the API's error shape."""
    return Response(
        content='{"error":"Rate limit exceeded. Try again later."}',
        status_code=429,
        media_type="application/json",
        headers={"Retry-After": str(exc.detail.split()[-1]) if exc.detail else "60"},
    )


# ─── Request ID + Logging Middleware ──────────────────────────────

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Inject request ID, log requests, add security headers."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request_id_var.set(rid)

        t0 = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled error", extra={"path": request.url.path})
            raise

        elapsed_ms = round((time.time() - t0) * 1000, 1)
        logger.info(
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "",
            },
        )

        response.headers["X-Request-ID"] = rid
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response


# ─── CORS configuration ──────────────────────────────────────────

def configure_cors(app, allowed_origins: Optional[list[str]] = None):
    """Add CORS middleware with configurable origins."""
    origins = allowed_origins
    if not origins:
        env_origins = os.environ.get("ALLOWED_ORIGINS", "")
        if env_origins:
            origins = [o.strip() for o in env_origins.split(",") if o.strip()]
        else:
            origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


# ─── Request body size limiter ───────────────────────────────────

class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_size: int = 1_048_576):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next):
        cl = request.headers.get("content-length")
        if cl:
            try:
                size = int(cl)
            except ValueError:
                return JSONResponse(status_code=400, content={"error": "Invalid Content-Length header"})
            if size > self.max_size:
                return JSONResponse(status_code=413, content={"error": "Request body too large"})
        return await call_next(request)


# ─── Input validation ─────────────────────────────────────────────

_XSS_PATTERN = re.compile(r'<script|javascript:|on\w+\s*=|<iframe|<object|<embed', re.IGNORECASE)


def check_xss(value: str) -> bool:
    return bool(_XSS_PATTERN.search(value))


def sanitize_input(value: str, field_name: str = "input") -> str:
    """Reject markup that would be rendered by the dashboard."""
    if check_xss(value):
        raise ValidationError(f"Invalid characters in {field_name}")
    return value


def validate_public_key(public_key: str) -> str:
    """Check that an agent public key is a hex-encoded Ed25519 verify key."""
    try:
        VerifyKey(bytes.fromhex(public_key))
    except (ValueError, TypeError, CryptoError):
        raise ValidationError("public_key must be a 32-byte hex Ed25519 key")
    return public_key.lower()


def log_auth_failure(ip: str, reason: str, endpoint: str = ""):
    logger.warning("Auth failure: %s from %s on %s", reason, ip, endpoint,
                   extra={"event": "auth_failure", "ip": ip, "reason": reason, "endpoint": endpoint})


# ─── Apply all security to a FastAPI app ──────────────────────────

def apply_security(app, allowed_origins: Optional[list[str]] = None):
    """One-call setup: CORS, rate limiting, body size limit, request logging."""
    configure_cors(app, allowed_origins)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
