import os
from functools import lru_cache


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_optional(name: str) -> str | None:
    val = os.getenv(name, "").strip()
    return val or None


class Settings:
    """Environment-driven settings. Properties are read at call time so tests can patch the environment."""

    # Postgres connection parts, used when DATABASE_URL is not given
    db_user: str = os.getenv("DB_USER", "postgres")
    db_password: str = os.getenv("DB_PASSWORD", "postgres")
    db_host: str = os.getenv("DB_HOST", "postgres")
    db_port: str = os.getenv("DB_PORT", "5432")
    db_name: str = os.getenv("DB_NAME", "video_interview")

    @property
    def database_url(self) -> str:
        override = _env_optional("DATABASE_URL")
        if override:
            return override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # Object storage
    @property
    def aws_region(self) -> str:
        return os.getenv("AWS_REGION", "us-east-1")

    @property
    def aws_access_key_id(self) -> str | None:
        return os.getenv("AWS_ACCESS_KEY_ID")

    @property
    def aws_secret_access_key(self) -> str | None:
        return os.getenv("AWS_SECRET_ACCESS_KEY")

    @property
    def s3_bucket(self) -> str | None:
        return _env_optional("S3_BUCKET")

    @property
    def s3_public_base_url(self) -> str | None:
        """Public base for clip locators, e.g. a CDN in front of the bucket."""
        val = _env_optional("S3_PUBLIC_BASE_URL")
        return val.rstrip("/") if val else None

    @property
    def storage_backend(self) -> str:
        raw = os.getenv("STORAGE_BACKEND", "").strip().lower()
        if raw in {"s3", "local"}:
            return raw
        return "s3" if self.s3_bucket else "local"

    @property
    def local_storage_path(self) -> str:
        return os.getenv("LOCAL_STORAGE_PATH", "./storage")

    @property
    def local_storage_base_url(self) -> str:
        return os.getenv("LOCAL_STORAGE_BASE_URL", "http://localhost:8000/media").rstrip("/")

    @property
    def media_prefix(self) -> str:
        return os.getenv("MEDIA_PREFIX", "interview-videos").strip("/")

    @property
    def retention_media_days(self) -> int:
        return _env_int("RETENTION_MEDIA_DAYS", 365)

    # Clip limits
    @property
    def max_clip_bytes(self) -> int:
        return _env_int("MAX_CLIP_BYTES", 200 * 1024 * 1024)

    @property
    def clip_content_type(self) -> str:
        return os.getenv("CLIP_CONTENT_TYPE", "video/webm")

    # Remote analysis capability; unset URL means every answer gets the fallback
    @property
    def analysis_url(self) -> str | None:
        return _env_optional("ANALYSIS_URL")

    @property
    def analysis_api_key(self) -> str | None:
        return _env_optional("ANALYSIS_API_KEY")

    @property
    def analysis_timeout_seconds(self) -> float:
        return _env_float("ANALYSIS_TIMEOUT_SECONDS", 60.0)

    # Runtime
    @property
    def environment(self) -> str:
        return os.getenv("ENVIRONMENT", "development")

    @property
    def debug(self) -> bool:
        return os.getenv("DEBUG", "false").lower() in {"1", "true", "yes"}

    @property
    def log_level(self) -> str:
        return os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def cors_allowed_origins(self) -> list[str]:
        """Extra origins from ALLOWED_ORIGINS (comma-separated), added to the local dev defaults."""
        raw = os.getenv("ALLOWED_ORIGINS", "")
        return [o.strip() for o in raw.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
