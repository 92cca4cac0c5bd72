"""Application configuration using Pydantic Settings."""

import re
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings
from typing import List, Optional
import os


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Service Identity
    SERVICE_NAME: str = "service-catalog"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, production

    # Logging Configuration
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_JSON: bool = True    # JSON logs (prod) vs pretty console (dev)
    DEBUG: bool = False      # Enable debug mode features

    # Database (any SQLAlchemy async URL)
    DATABASE_URL: str = f"sqlite+aiosqlite:///{os.path.join(os.getcwd(), 'catalog.db')}"

    # Storage Backend Configuration
    STORAGE_BACKEND: str = "local"  # Options: "local" or "s3"
    STORAGE_PATH: str = os.path.join(os.getcwd(), "uploads")
    STORAGE_PUBLIC_PATH: str = "/uploads"  # Mount point for local files

    # S3 Storage Configuration
    AWS_REGION: str = "eu-west-1"
    AWS_S3_BUCKET_NAME: str = "service-catalog-dev"
    AWS_ENDPOINT_URL: Optional[str] = None  # For MinIO or S3-compatible services
    AWS_PUBLIC_BASE_URL: Optional[str] = None  # CDN or custom domain in front of the bucket

    # Logical folders for category images
    MAIN_IMAGE_FOLDER: str = "services/main"
    SUB_IMAGE_FOLDER: str = "services/sub"

    # Upload Constraints
    MAX_UPLOAD_SIZE_MB: int = 5
    ALLOWED_MIME_TYPES: List[str] = ["image/jpeg", "image/png", "image/webp", "image/gif"]

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    @field_validator('AWS_S3_BUCKET_NAME')
    @classmethod
    def validate_s3_bucket_name(cls, v: str) -> str:
        """Validate S3 bucket name follows AWS naming conventions.

        Rules:
        - 3-63 characters long
        - Lowercase letters, numbers, hyphens, and dots only
        - Must start and end with a letter or number
        - No consecutive dots
        - Not formatted as an IP address
        """
        if not v:  # Allow empty for local storage backend
            return v

        if not 3 <= len(v) <= 63:
            raise ValueError(f"S3 bucket name must be 3-63 characters long, got {len(v)}")

        if not re.match(r'^[a-z0-9][a-z0-9.-]*[a-z0-9]$', v):
            raise ValueError(
                f"S3 bucket name '{v}' must start/end with letter or number, "
                "and contain only lowercase letters, numbers, hyphens, and dots"
            )

        if '..' in v:
            raise ValueError("S3 bucket name cannot contain consecutive dots")

        if re.match(r'^\d+\.\d+\.\d+\.\d+$', v):
            raise ValueError("S3 bucket name cannot be formatted as an IP address")

        return v

    @field_validator('AWS_ENDPOINT_URL', 'AWS_PUBLIC_BASE_URL')
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate optional URL settings if provided."""
        if v is None or v == "":
            return None

        if not re.match(r'^https?://.+', v):
            raise ValueError(f"URL must start with http:// or https://, got '{v}'")

        return v.rstrip('/')

    @field_validator('STORAGE_PUBLIC_PATH')
    @classmethod
    def validate_public_path(cls, v: str) -> str:
        """Public path must be an absolute URL path without trailing slash."""
        if not v.startswith('/'):
            raise ValueError(f"STORAGE_PUBLIC_PATH must start with '/', got '{v}'")
        return v.rstrip('/') or '/'

    @field_validator('MAX_UPLOAD_SIZE_MB')
    @classmethod
    def validate_upload_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"MAX_UPLOAD_SIZE_MB must be positive, got {v}")
        return v

    @model_validator(mode='after')
    def validate_storage_configuration(self):
        """Ensure the selected storage backend has required configuration."""
        if self.STORAGE_BACKEND not in ("local", "s3"):
            raise ValueError(
                f"STORAGE_BACKEND must be 'local' or 's3', got '{self.STORAGE_BACKEND}'"
            )
        if self.STORAGE_BACKEND == "s3":
            if not self.AWS_S3_BUCKET_NAME:
                raise ValueError(
                    "AWS_S3_BUCKET_NAME must be set when STORAGE_BACKEND=s3"
                )
            if not self.AWS_REGION:
                raise ValueError(
                    "AWS_REGION must be set when STORAGE_BACKEND=s3"
                )
        return self

    @property
    def max_upload_size_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def is_debug_mode(self) -> bool:
        """Check if application is in debug mode."""
        return self.DEBUG or self.LOG_LEVEL.upper() == "DEBUG"

    @property
    def use_json_logs(self) -> bool:
        """Determine if JSON logging should be used.

        In production, always use JSON logs.
        In development, allow override via LOG_JSON setting.
        """
        if self.ENVIRONMENT == "production":
            return True
        if self.DEBUG:
            return self.LOG_JSON
        return True

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
