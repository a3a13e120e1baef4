from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Filesystem layout: uploads land in upload_dir, extracted media under
    # media_root/<user_id>/<upload_id>/ and is served back from media_url_prefix.
    upload_dir: str = "uploads"
    media_root: str = "uploads/media"
    media_url_prefix: str = "/media"

    # Upload and archive limits
    max_upload_bytes: int = 500 * 1024 * 1024
    max_archive_members: int = 20_000
    max_member_bytes: int = 500 * 1024 * 1024
    max_total_bytes: int = 4 * 1024 * 1024 * 1024

    # Ingestion behaviour
    progress_every: int = 10
    date_order: str = "month_first"
    self_share_threshold: float = 0.6
    metadata_prefix: str = "__MACOSX"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
