"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    log_level: str = "INFO"

    # Batch admission
    batch_limit: int = 50
    max_input_mb: int = 25
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: float = 60.0

    # Delivery strategy
    max_item_bytes: int = 4 * 1024 * 1024
    single_item_direct: bool = True
    upload_archives: bool = False

    # Job lifecycle
    job_eviction_seconds: float = 60.0
    job_retention_seconds: float = 3600.0
    shutdown_grace_seconds: float = 30.0

    # Upload backend: "local" or "supabase"
    upload_backend: str = "local"
    results_dir: Optional[str] = None
    result_ttl_hours: int = 2
    public_base_url: str = "http://localhost:8000"

    # Supabase (only when upload_backend=supabase)
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_bucket: str = "optimized-images"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
