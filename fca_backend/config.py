"""Configuration for the offline sync backend."""
from typing import List, Optional
from pydantic_settings import BaseSettings
from fca_shared.enums import ConflictPolicy


class SyncSettings(BaseSettings):
    """Backend settings loaded from FCA_* environment variables."""

    # Database
    database_url: str = 'sqlite:///fca_sync.db'

    # Conflict resolution
    conflict_policy: ConflictPolicy = ConflictPolicy.SERVER_WINS

    # Batch limits
    max_batch_size: int = 200

    # Photo ingestion
    max_photo_bytes: int = 10 * 1024 * 1024  # 10MB
    allowed_photo_mime_types: List[str] = [
        'image/jpeg', 'image/png', 'image/gif', 'image/webp', 'image/heic'
    ]
    thumbnail_max_size: int = 200  # Maximum thumbnail dimension in pixels

    # Idempotency receipts for Photo/Deficiency replays
    sync_receipt_ttl_hours: int = 72

    # Blob storage (Apache Libcloud)
    storage_provider: str = 'local'
    storage_access_key: Optional[str] = None
    storage_secret_key: Optional[str] = None
    storage_bucket: str = 'fca-photos'
    storage_region: str = 'us-east-1'
    storage_local_path: Optional[str] = None
    storage_host: Optional[str] = None  # MinIO endpoint
    storage_public_base_url: Optional[str] = None
    storage_upload_attempts: int = 3
    storage_retry_wait_seconds: float = 1.0

    # Logging
    log_level: str = 'INFO'
    log_dir: Optional[str] = None

    class Config:
        env_prefix = 'FCA_'
        case_sensitive = False
