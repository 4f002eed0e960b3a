"""
Security utilities: API key auth for operators, bearer-secret auth for the
cron trigger, and rate limiting.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address

from newsdesk.core.config import Settings, get_settings

# ── Rate limiter (attached to FastAPI app in main.py) ───────
limiter = Limiter(key_func=get_remote_address)

# ── API Key authentication (operator endpoints) ─────────────
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    api_key: Annotated[str | None, Security(_api_key_header)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    if not api_key or not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing API key",
        )
    return api_key


# ── Bearer secret (external cron scheduler) ─────────────────
_bearer = HTTPBearer(auto_error=False)


async def verify_cron_secret(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(_bearer)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    """The trigger caller must send `Authorization: Bearer <AUTOMATION_CRON_SECRET>`."""
    token = credentials.credentials if credentials else ""
    if not token or not secrets.compare_digest(token, settings.automation_cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


_ROLE_MARKERS = (
    "SYSTEM:", "ASSISTANT:", "USER:", "```system",
    "<|im_start|>", "<|im_end|>", "<<SYS>>", "<</SYS>>",
)


def sanitize_untrusted(text: str) -> str:
    """Neutralise role markers in scraped text before it is placed inside a prompt."""
    for marker in _ROLE_MARKERS:
        text = text.replace(marker, "[REDACTED]")
    return text


def hash_content(content: str) -> str:
    """Deterministic content hash for slugs & dedup keys."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
