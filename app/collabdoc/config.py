import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    data_dir: str
    document_id: str
    users_config: str
    collab_base_url: str

    sse_keepalive_seconds: float
    sse_retry_ms: int
    sse_queue_size: int

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///collabdoc.db"),
        data_dir=_getenv("DATA_DIR", os.path.join(os.getcwd(), "data")),
        document_id=_getenv("DOCUMENT_ID", "default"),
        users_config=_getenv("USERS_CONFIG", ""),
        collab_base_url=_getenv("COLLAB_BASE_URL", "http://localhost:4100"),
        sse_keepalive_seconds=_getenv_float("SSE_KEEPALIVE_SECONDS", 15.0),
        sse_retry_ms=_getenv_int("SSE_RETRY_MS", 3000),
        sse_queue_size=_getenv_int("SSE_QUEUE_SIZE", 256),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "DATA_DIR": s.data_dir,
        "DOCUMENT_ID": s.document_id,
        "USERS_CONFIG": s.users_config,
        "COLLAB_BASE_URL": s.collab_base_url,
        "SSE_KEEPALIVE_SECONDS": s.sse_keepalive_seconds,
        "SSE_RETRY_MS": s.sse_retry_ms,
        "SSE_QUEUE_SIZE": s.sse_queue_size,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # the Word add-in posts whole .docx files as base64 JSON
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }
