"""Startup configuration checks, response headers and audit logging for the API.

Uploaded fund documents are confidential. The audit trail records that a
document arrived (name, size, session) and never what it says.
"""

import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from loguru import logger


PLACEHOLDER_KEYS = {
    "your_gemini_api_key_here",
    "your_api_key_here",
    "changeme",
    "placeholder",
    "test_key",
}

# Fields that may carry document or model text; dropped from audit entries
REDACTED_AUDIT_FIELDS = {"text", "content", "document_text", "message", "reply", "prompt"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


def validate_api_key_format(api_key: Optional[str]) -> bool:
    """True if ``api_key`` looks like a real Gemini key rather than a placeholder."""
    if not api_key or api_key.strip().lower() in PLACEHOLDER_KEYS:
        return False
    if api_key.startswith("AIza"):
        return len(api_key) == 39
    return re.fullmatch(r"[A-Za-z0-9_-]{20,}", api_key) is not None


def is_development() -> bool:
    return os.getenv("ENVIRONMENT", "production").lower() == "development"


def _positive_int(env: Mapping[str, str], name: str, problems: List[str]) -> None:
    raw = env.get(name)
    if raw is None:
        return
    if not raw.isdigit() or int(raw) <= 0:
        problems.append(f"{name} must be a positive integer, got {raw!r}")


def validate_environment_security(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Check the deployment configuration before serving requests.

    Args:
        env: Environment mapping (``os.environ`` when omitted)

    Returns:
        Dictionary with ``valid``, ``errors`` and ``warnings``
    """
    env = os.environ if env is None else env
    errors: List[str] = []
    warnings: List[str] = []

    api_key = env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY")
    if not api_key:
        errors.append("GEMINI_API_KEY is not set")
    elif not validate_api_key_format(api_key):
        errors.append("GEMINI_API_KEY looks like a placeholder or is malformed")

    for name in ("MAX_FILE_SIZE_MB", "SESSION_TTL_MINUTES", "RATE_LIMIT_REQUESTS", "RATE_LIMIT_WINDOW"):
        _positive_int(env, name, errors)

    origins = [origin.strip() for origin in env.get("CORS_ORIGINS", "").split(",") if origin.strip()]
    if not origins:
        warnings.append("CORS_ORIGINS is not configured; only the local defaults are allowed")
    elif "*" in origins:
        warnings.append("CORS_ORIGINS allows any origin; uploaded documents could be read cross-site")

    if env.get("ENVIRONMENT", "production").lower() == "development":
        warnings.append("ENVIRONMENT=development: error responses include internal details")

    if env.get("LOG_LEVEL", "INFO").upper() == "DEBUG":
        warnings.append("LOG_LEVEL=DEBUG writes prompt sizes and stage timings for every request")

    return {"valid": not errors, "errors": errors, "warnings": warnings}


def get_security_headers() -> Dict[str, str]:
    """Headers added to every response."""
    return dict(SECURITY_HEADERS)


def log_security_audit(event_type: str, session_id: str, details: Optional[Dict[str, Any]] = None):
    """Write an audit entry for a security-relevant event.

    Args:
        event_type: Event name (e.g. "documents_received")
        session_id: Session the event belongs to
        details: Names, sizes and flags; text-bearing fields are dropped
    """
    safe_details = {
        key: value for key, value in (details or {}).items()
        if key not in REDACTED_AUDIT_FIELDS
    }
    logger.bind(audit=True).info(
        f"SECURITY_AUDIT: {event_type}",
        event_type=event_type,
        session_id=session_id,
        recorded_at=datetime.now(timezone.utc).isoformat(),
        details=safe_details
    )
