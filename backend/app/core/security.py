"""Security dependencies, rate limiting and access logging"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from fastapi import Request

from app.core.config import settings
from app.core.errors import UnauthenticatedError
from app.db import redis as redis_store

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")

SESSION_COOKIE = "session_id"


def get_current_user_id(request: Request) -> Optional[int]:
    """Dependency: user_id for the session cookie, or None when not logged in"""
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        return None
    return redis_store.get_session(session_id)


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        raise UnauthenticatedError("Not authenticated. Please log in.")

    user_id = redis_store.get_session(session_id)
    if not user_id:
        raise UnauthenticatedError("Session expired. Please log in again.")
    return user_id


def get_client_identifier(request: Request, session_id: Optional[str] = None) -> str:
    """Get a unique identifier for rate limiting"""
    if session_id:
        return f"session:{session_id}"

    # Fallback to IP address
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """True while the identifier is within its window; strict applies to state-changing requests"""
    return redis_store.check_rate_limit(identifier, strict=strict)


def allowed_origins() -> list:
    origins = [settings.FRONTEND_URL, settings.SITE_URL]
    if settings.ENVIRONMENT == "development":
        origins.extend([
            "http://localhost:3000",
            "http://localhost:8000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:8000"
        ])
    return [o.rstrip("/") for o in origins if o]


def validate_origin_referer(request: Request) -> bool:
    """Validate Origin and Referer headers"""
    origin = request.headers.get("Origin")
    referer = request.headers.get("Referer")
    allowed = allowed_origins()

    # Allow requests without Origin/Referer in development
    if settings.ENVIRONMENT == "development" and not origin and not referer:
        return True

    if origin and origin.rstrip("/") in allowed:
        return True

    # Check referer as fallback
    if referer:
        parsed = urlparse(referer)
        if f"{parsed.scheme}://{parsed.netloc}" in allowed:
            return True

    return False


def log_api_access(
    request: Request,
    session_id: Optional[str] = None,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "session_id": session_id[:16] + "..." if session_id else None,
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "origin": request.headers.get("Origin", "none"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
