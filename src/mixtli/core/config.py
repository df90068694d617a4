"""Configuration management for Mixtli Transfer."""

import json
import re
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from mixtli.core.errors import ConfigurationError

_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3, "TB": 1024**4}
_SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*(B|KB|MB|GB|TB)?$", re.IGNORECASE)

# SigV4 presigned URLs cannot outlive seven days
MAX_URL_TTL_SECONDS = 7 * 24 * 60 * 60


def parse_size(value: Any, fallback: int) -> int:
    """Parse a byte count such as ``1048576``, ``"16MB"`` or ``"4 GB"``.

    Args:
        value: Raw value from configuration
        fallback: Value returned when ``value`` is empty or unparseable

    Returns:
        Size in bytes
    """
    if value is None or value == "":
        return fallback
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip().upper()
    match = _SIZE_PATTERN.match(text)
    if not match:
        try:
            return int(float(text))
        except ValueError:
            return fallback

    amount = float(match.group(1))
    unit = (match.group(2) or "B").upper()
    return int(amount * _SIZE_UNITS[unit])


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    ENV: str = "local"
    SERVICE_NAME: str = "mixtli-transfer"
    SERVICE_VERSION: str = "3.1.0"
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: str = "[]"  # JSON list of exact origins

    # Storage Configuration
    STORAGE_BACKEND: str = "local"  # "s3", "gcs" or "local"
    KEY_PREFIX: str = "uploads"
    URL_TTL_SECONDS: int = 5 * 24 * 60 * 60

    # S3-compatible (AWS S3, Cloudflare R2, MinIO)
    S3_ENDPOINT: str = ""
    S3_REGION: str = "auto"
    S3_BUCKET: str = ""
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_FORCE_PATH_STYLE: bool = True

    # Google Cloud Storage
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""
    GCS_SIGNING_KEY_FILE: str = ""  # Service account JSON; empty = IAM signBlob

    # Local filesystem backend
    LOCAL_STORAGE_PATH: str = "./data/storage"
    LOCAL_SIGNING_SECRET: str = "mixtli-local-dev-secret"
    PUBLIC_BASE_URL: str = "http://localhost:8080"

    # Plans
    PLAN_LIMITS_JSON: str = ""
    FREE_MAX_FILE_BYTES: str = "4GB"
    PRO_MAX_FILE_BYTES: str = "200GB"
    PROMAX_MAX_FILE_BYTES: str = "300GB"
    ENABLE_PLAN_HEADER: bool = True
    DEFAULT_PLAN: str = "free"

    # Multipart
    ENABLE_MULTIPART: bool = True
    MULTIPART_PART_SIZE: str = "16MB"

    # Bundles
    BUNDLE_MISSING_MEMBER_POLICY: str = "skip"  # "skip" or "fail"
    BUNDLE_COMPRESSION_LEVEL: int = 6
    BUNDLE_READ_CHUNK_BYTES: int = 64 * 1024
    MAX_MANIFEST_BYTES: int = 2 * 1024 * 1024
    LINK_TTL_DAYS: int = 7

    @property
    def allowed_origins(self) -> list[str]:
        """Parse ALLOWED_ORIGINS into a list, ignoring malformed JSON."""
        try:
            origins = json.loads(self.ALLOWED_ORIGINS or "[]")
        except json.JSONDecodeError:
            return []
        if not isinstance(origins, list):
            return []
        return [str(origin) for origin in origins]

    @property
    def plan_limits(self) -> dict[str, int]:
        """Byte ceilings per plan name."""
        defaults = {
            "free": parse_size(self.FREE_MAX_FILE_BYTES, 4 * 1024**3),
            "pro": parse_size(self.PRO_MAX_FILE_BYTES, 200 * 1024**3),
            "promax": parse_size(self.PROMAX_MAX_FILE_BYTES, 300 * 1024**3),
        }
        if not self.PLAN_LIMITS_JSON:
            return defaults

        try:
            overrides = json.loads(self.PLAN_LIMITS_JSON)
        except json.JSONDecodeError:
            return defaults
        if not isinstance(overrides, dict):
            return defaults

        return {
            name: parse_size(overrides.get(name), fallback)
            for name, fallback in defaults.items()
        }

    @property
    def multipart_part_size_bytes(self) -> int:
        """Convert MULTIPART_PART_SIZE to bytes."""
        return parse_size(self.MULTIPART_PART_SIZE, 16 * 1024 * 1024)

    @property
    def key_prefix(self) -> str:
        """Normalized key prefix without surrounding slashes."""
        from mixtli.services.keys import sanitize_prefix

        return sanitize_prefix(self.KEY_PREFIX)

    def validate_storage_settings(self) -> None:
        """Fail fast on configuration the gateway cannot run with.

        Raises:
            ConfigurationError: If the selected backend is unknown or is
                missing its endpoint, bucket or credentials
        """
        backend = self.STORAGE_BACKEND
        if backend == "s3":
            missing = [
                name
                for name in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
                if not getattr(self, name)
            ]
            if missing:
                raise ConfigurationError(f"Missing S3 configuration: {', '.join(missing)}")
        elif backend == "gcs":
            if not self.GCS_BUCKET_NAME:
                raise ConfigurationError("GCS_BUCKET_NAME not configured")
        elif backend == "local":
            if not self.LOCAL_STORAGE_PATH:
                raise ConfigurationError("LOCAL_STORAGE_PATH not configured")
            if not self.LOCAL_SIGNING_SECRET:
                raise ConfigurationError("LOCAL_SIGNING_SECRET not configured")
        else:
            raise ConfigurationError(f"Unknown STORAGE_BACKEND: {backend}")

        if not 0 < self.URL_TTL_SECONDS <= MAX_URL_TTL_SECONDS:
            raise ConfigurationError(
                f"URL_TTL_SECONDS must be between 1 and {MAX_URL_TTL_SECONDS}"
            )
        if self.BUNDLE_MISSING_MEMBER_POLICY not in ("skip", "fail"):
            raise ConfigurationError(
                f"Unknown BUNDLE_MISSING_MEMBER_POLICY: {self.BUNDLE_MISSING_MEMBER_POLICY}"
            )


# Singleton settings instance
settings = Settings()
