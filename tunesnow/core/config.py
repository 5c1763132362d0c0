# tunesnow/core/config.py
from __future__ import annotations

"""
# TunesNow — Centralized Configuration (Pydantic v2)

Single `settings` object with strongly-typed, environment-driven config.

## Goals
- Safe defaults for local/dev (SQLite + in-memory object store).
- Explicit where prod needs secrets (JWT, upload signing, S3 bucket).
- Bounded knobs for ingestion (digest chunking, reconcile retries) and
  streaming (chunk size) so a bad env value cannot disable a guard.

## Usage
    from tunesnow.core.config import settings
"""

import logging
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)
load_dotenv()  # harmless in prod; convenient in dev


# ─────────────────────────────────────────────────────────────
# Small helpers
# ─────────────────────────────────────────────────────────────
def _split_csv(v: str | None) -> list[str]:
    """Split a comma-separated string into a trimmed list (empty-safe)."""
    if not v:
        return []
    return [s.strip() for s in str(v).split(",") if s and s.strip()]


def _derive_async_url(url: str) -> str:
    """Map sync driver URLs onto their async counterparts."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


# ─────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────
class Settings(BaseSettings):
    """
    Global application settings sourced from environment.

    Storage:
        - `STORAGE_BACKEND=s3` uses boto3 against `AWS_BUCKET_NAME`.
        - `STORAGE_BACKEND=memory` keeps objects in-process and signs upload
          grants with `UPLOAD_SIGNING_SECRET` (dev/tests only).

    Notes:
        - `DATABASE_URL` accepts sync or async DSNs; `ASYNC_DATABASE_URL`
          always yields the async driver variant.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # don't crash on unknown keys
    )

    # ── App meta ──────────────────────────────────────────────
    PROJECT_NAME: str = "TunesNow API"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    ENV: Literal["development", "staging", "production", "test"] = "development"
    ENABLE_DOCS: bool = True

    # ── Security / JWT (tokens are issued by the identity service) ──────────
    JWT_SECRET_KEY: SecretStr = SecretStr("dev-jwt-secret-change-me")
    JWT_ALGORITHM: Literal["HS256", "HS384", "HS512"] = "HS256"
    JWT_ISSUER: Optional[str] = None
    JWT_AUDIENCE: Optional[str] = None
    ADMIN_ROLE: str = "admin"

    # ── Database ──────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./tunesnow.db"
    DB_POOL_SIZE: int = Field(10, ge=1, le=100)
    DB_MAX_OVERFLOW: int = Field(20, ge=0, le=200)

    # ── CORS ─────────────────────────────────────────────────
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = Field(
        default_factory=lambda: ["http://localhost:8000", "http://localhost:5173"]
    )

    # ── Object storage ───────────────────────────────────────
    STORAGE_BACKEND: Literal["s3", "memory"] = "memory"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[SecretStr] = None
    AWS_SESSION_TOKEN: Optional[SecretStr] = None
    AWS_REGION: str = "us-east-1"
    AWS_BUCKET_NAME: Optional[str] = None
    AWS_S3_ENDPOINT_URL: Optional[str] = None
    AWS_SSE_MODE: Optional[Literal["AES256", "aws:kms"]] = None
    AWS_KMS_KEY_ID: Optional[str] = None

    UPLOAD_SIGNING_SECRET: SecretStr = SecretStr("dev-upload-secret-change-me")
    UPLOAD_GRANT_TTL_SECONDS: int = Field(900, ge=60, le=24 * 60 * 60)
    UPLOAD_KEY_PREFIX: str = "uploads"
    PUBLIC_BASE_URL: AnyHttpUrl = "http://localhost:8000"
    MAX_UPLOAD_BYTES: int = Field(1024 * 1024 * 1024, ge=1)

    # ── Ingestion ─────────────────────────────────────────────
    SNIFF_BYTES: int = Field(64, ge=16, le=4096)
    DIGEST_CHUNK_BYTES: int = Field(8 * 1024 * 1024, ge=64 * 1024)
    EXTRACT_MAX_BYTES: int = Field(256 * 1024 * 1024, ge=1024)
    RECONCILE_MAX_ATTEMPTS: int = Field(5, ge=1, le=20)
    POSTPROCESS_ENABLED: bool = True
    WAVEFORM_POINTS: int = Field(200, ge=10, le=5000)

    # ── Streaming ─────────────────────────────────────────────
    STREAM_CHUNK_BYTES: int = Field(256 * 1024, ge=4 * 1024, le=16 * 1024 * 1024)

    # ── Entitlement ───────────────────────────────────────────
    ENTITLEMENT_POLICY_IMPL: Optional[str] = None  # "module.sub:ClassName"

    # ── Validators / normalizers ──────────────────────────────
    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def _assemble_cors_origins(cls, v: str | List[str]):
        if isinstance(v, str):
            return _split_csv(v)
        return v

    @field_validator("UPLOAD_KEY_PREFIX", mode="before")
    @classmethod
    def _normalize_prefix(cls, v: str | None) -> str:
        return (v or "uploads").strip().strip("/") or "uploads"

    # ── Derived / convenience properties ─────────────────────
    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENV.lower() == "development"

    @property
    def ASYNC_DATABASE_URL(self) -> str:
        """Async SQLAlchemy DSN."""
        return _derive_async_url(self.DATABASE_URL)

    @property
    def is_sqlite(self) -> bool:
        return self.ASYNC_DATABASE_URL.startswith("sqlite")

    @property
    def public_base_url_str(self) -> str:
        """`PUBLIC_BASE_URL` as a plain string without trailing slash."""
        return str(self.PUBLIC_BASE_URL).rstrip("/")


# Singleton instance
settings = Settings()
