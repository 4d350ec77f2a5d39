"""Process-wide configuration loaded once from the environment."""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineSettings(BaseSettings):
    """Configuration for storage addressing, codec defaults and retry policy."""

    model_config = SettingsConfigDict(
        env_prefix="CDN_VARIANTS_", env_file=".env", extra="ignore"
    )

    cdn_base_url: Optional[str] = None
    bucket_name: str = "tinypic"
    namespace: str = "images"
    storage_provider: str = "googleapis"
    raw_url_scheme: str = "gs"

    endpoint_url: Optional[str] = "https://storage.googleapis.com"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region: Optional[str] = None
    credentials_file: Optional[str] = None

    default_quality: int = Field(default=75, ge=1, le=100)
    default_max_size_mb: float = 1
    default_max_resolution: int = 2048
    upload_dir: str = "uploads"
    scratch_dir: Optional[str] = None
    accepted_mime_types: List[str] = Field(
        default_factory=lambda: [
            "image/jpeg",
            "image/png",
            "image/gif",
            "image/webp",
            "image/avif",
            "image/heic",
            "image/heif",
        ]
    )
    max_upload_size_mb: float = 10

    hash_metadata: bool = False
    use_cdn: bool = True
    cache_control: str = "public, max-age=31536000, immutable"

    network_timeout_seconds: float = 30
    max_retries: int = Field(default=3, ge=1)
    retry_initial_delay: float = 1.0
    retry_backoff_factor: float = 2.0

    variant_concurrency: int = Field(default=1, ge=1)
    batch_size: int = Field(default=5, ge=1)
    batch_deadline_seconds: Optional[float] = None

    @field_validator("cdn_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        return value.rstrip("/") if value else value

    @property
    def max_upload_size_bytes(self) -> int:
        return int(self.max_upload_size_mb * 1024 * 1024)

    @property
    def default_max_output_bytes(self) -> int:
        return int(self.default_max_size_mb * 1024 * 1024)
