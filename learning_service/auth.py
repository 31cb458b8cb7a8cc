"""Authentication for the learning service.

Two auth modes:
1. Cloud Run OIDC: Verifies Google identity tokens (Authorization header).
2. Shared bearer token: For local dev only (disabled when K_SERVICE is set),
   maps to an admin identity.

The auth middleware attaches an Identity (principal + role) to
``request.state.identity``; admin-only routes depend on `require_admin`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from learning_service.config import (
    IS_CLOUD_RUN,
    LEARNING_ADMIN_PRINCIPALS,
    LEARNING_ALLOWED_ISSUERS,
    LEARNING_OIDC_AUDIENCE,
    LEARNING_ROLE_CLAIM,
    LEARNING_SHARED_TOKEN,
)

logger = logging.getLogger(__name__)

ROLES = ("student", "teacher", "admin")

# Cache the Google transport session for token verification
_transport = google_requests.Request()

# Paths that skip auth
_PUBLIC_PATHS = {"/liveness", "/readiness", "/docs", "/openapi.json"}


@dataclass
class Identity:
    """Authenticated caller identity."""

    user_id: str
    principal: str  # email or sub claim
    role: str = "student"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_student(self) -> bool:
        return self.role == "student"


async def get_identity(request: Request) -> Identity:
    """Extract and verify caller identity from the request.

    Raises HTTPException 401 if no valid credentials are provided.
    """
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization token")

    # Try shared token first (dev only)
    if not IS_CLOUD_RUN and LEARNING_SHARED_TOKEN and token == LEARNING_SHARED_TOKEN:
        return Identity(user_id="dev-admin", principal="dev-admin@local", role="admin")

    # Verify OIDC token
    try:
        claims = id_token.verify_token(token, _transport, audience=LEARNING_OIDC_AUDIENCE)
        issuer = str(claims.get("iss", "")).strip()
        if issuer not in LEARNING_ALLOWED_ISSUERS:
            raise HTTPException(status_code=401, detail="Invalid token issuer")

        email = claims.get("email", "")
        sub = claims.get("sub", "")
        principal = email or sub
        if not principal:
            raise HTTPException(status_code=401, detail="Token missing email and sub claims")

        return Identity(user_id=principal, principal=principal, role=resolve_role(claims, principal))
    except HTTPException:
        raise
    except Exception as e:
        logger.warning("Token verification failed: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token") from e


def resolve_role(claims: Mapping[str, Any], principal: str) -> str:
    """Role from the configured claim; the admin allow-list always wins."""
    if principal in LEARNING_ADMIN_PRINCIPALS:
        return "admin"
    claim_key = LEARNING_ROLE_CLAIM.strip()
    value = claims.get(claim_key) if claim_key else None
    role = str(value).strip().lower() if value is not None else ""
    return role if role in ROLES else "student"


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return None


def is_public_path(path: str) -> bool:
    """Check if the request path skips authentication."""
    return path in _PUBLIC_PATHS or path.startswith("/docs")


def current_identity(request: Request) -> Identity:
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity


def require_admin(request: Request) -> Identity:
    identity = current_identity(request)
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


def require_auth_on_cloud_run() -> None:
    """Safety check: shared token must not be usable on Cloud Run."""
    if IS_CLOUD_RUN and LEARNING_SHARED_TOKEN:
        logger.warning(
            "LEARNING_SHARED_TOKEN is set on Cloud Run; it will be ignored. "
            "Use OIDC tokens for authentication in production."
        )
    if IS_CLOUD_RUN and not LEARNING_OIDC_AUDIENCE:
        raise RuntimeError("LEARNING_OIDC_AUDIENCE must be set on Cloud Run")
