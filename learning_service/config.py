"""Environment-variable-driven configuration for the learning service.

All config comes from env vars; ingestion-specific settings live in
learning_service.ingestion.config.
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# -- Uploads ------------------------------------------------------------------
LEARNING_UPLOAD_DIR: str = os.getenv("LEARNING_UPLOAD_DIR", "uploads")
LEARNING_UPLOAD_BUCKET: str | None = os.getenv("LEARNING_UPLOAD_BUCKET") or None
LEARNING_PUBLIC_BASE_URL: str = os.getenv(
    "LEARNING_PUBLIC_BASE_URL", "https://storage.googleapis.com"
)
LEARNING_MAX_UPLOAD_BYTES: int = int(os.getenv("LEARNING_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
LEARNING_ALLOWED_UPLOAD_TYPES: set[str] = set(
    _env_csv(
        "LEARNING_ALLOWED_UPLOAD_TYPES",
        "application/pdf,image/png,image/jpg,image/jpeg,image/webp,image/gif,text/plain",
    )
)

# -- Quiz generation ----------------------------------------------------------
QUIZ_MODEL: str = os.getenv("QUIZ_MODEL", "gemini-2.5-flash")
QUIZ_MAX_ATTEMPTS: int = int(os.getenv("QUIZ_MAX_ATTEMPTS", "2"))
QUIZ_RETRY_BASE_SECONDS: float = float(os.getenv("QUIZ_RETRY_BASE_SECONDS", "1.0"))
QUIZ_SOURCE_MAX_CHARS: int = int(os.getenv("QUIZ_SOURCE_MAX_CHARS", "6000"))
QUIZ_TEMPERATURE: float = float(os.getenv("QUIZ_TEMPERATURE", "0.7"))
QUIZ_MAX_OUTPUT_TOKENS: int = int(os.getenv("QUIZ_MAX_OUTPUT_TOKENS", "4000"))

# -- Auth ---------------------------------------------------------------------
LEARNING_SHARED_TOKEN: str | None = os.getenv("LEARNING_SHARED_TOKEN")
LEARNING_OIDC_AUDIENCE: str | None = os.getenv("LEARNING_OIDC_AUDIENCE")
LEARNING_ALLOWED_ISSUERS: set[str] = set(
    _env_csv("LEARNING_ALLOWED_ISSUERS", "https://accounts.google.com,accounts.google.com")
)
LEARNING_ROLE_CLAIM: str = os.getenv("LEARNING_ROLE_CLAIM", "role")
LEARNING_ADMIN_PRINCIPALS: set[str] = set(_env_csv("LEARNING_ADMIN_PRINCIPALS", ""))

# -- GCP ----------------------------------------------------------------------
VERTEX_PROJECT: str = os.getenv("GOOGLE_CLOUD_PROJECT", "learning-platform")
VERTEX_LOCATION: str = os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")

# -- CORS ---------------------------------------------------------------------
LEARNING_CORS_ALLOW_ORIGINS: list[str] = _env_csv(
    "LEARNING_CORS_ALLOW_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
)
LEARNING_CORS_ALLOW_METHODS: list[str] = _env_csv(
    "LEARNING_CORS_ALLOW_METHODS",
    "GET,POST,PATCH,DELETE,OPTIONS",
)
LEARNING_CORS_ALLOW_HEADERS: list[str] = _env_csv(
    "LEARNING_CORS_ALLOW_HEADERS",
    "Authorization,Content-Type",
)
LEARNING_CORS_ALLOW_CREDENTIALS: bool = _env_bool("LEARNING_CORS_ALLOW_CREDENTIALS", False)

# -- Server -------------------------------------------------------------------
IS_CLOUD_RUN: bool = bool(os.getenv("K_SERVICE"))
