"""AWS S3 storage backend."""

import aioboto3
import mimetypes
from typing import Optional
from botocore.exceptions import ClientError, BotoCoreError

from service_catalog.core.errors import StorageDeleteError, StorageWriteError
from service_catalog.core.logging_config import get_logger
from service_catalog.schemas.service_category import ImageAttachment
from service_catalog.storage.protocol import build_object_key


logger = get_logger(__name__)

_MISSING_OBJECT_CODES = ("NoSuchKey", "404", "NotFound")


class S3StorageBackend:
    """AWS S3 storage implementation using a single bucket with prefixes.

    The logical folder becomes a key prefix. Supports both AWS S3 and
    S3-compatible services (e.g., MinIO) via endpoint_url.

    The locator is a public URL; the deletion handle is the object key that
    the URL was built from, stored separately so it is never parsed back.
    """

    def __init__(
        self,
        region: str,
        bucket_name: str,
        endpoint_url: Optional[str] = None,
        public_base_url: Optional[str] = None,
        session: Optional[aioboto3.Session] = None,
    ):
        """Initialize S3 storage backend.

        Args:
            region: AWS region name (e.g., "eu-west-1")
            bucket_name: Physical S3 bucket name
            endpoint_url: Optional S3-compatible endpoint (e.g., "http://minio:9000")
            public_base_url: Base URL clients fetch objects from (CDN or custom domain)
            session: aioboto3 session to reuse
        """
        self.session = session or aioboto3.Session()
        self.region = region
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.public_base_url = (public_base_url or self._default_public_base_url()).rstrip("/")

        logger.info(
            "s3_storage_backend_initialized",
            region=self.region,
            bucket_name=self.bucket_name,
            endpoint_url=self.endpoint_url,
            public_base_url=self.public_base_url,
        )

    def _default_public_base_url(self) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com"

    def _get_s3_client(self):
        """Create S3 client with optional custom endpoint."""
        return self.session.client(
            's3',
            region_name=self.region,
            endpoint_url=self.endpoint_url
        )

    @staticmethod
    def _error_code(exc: ClientError) -> str:
        return exc.response.get('Error', {}).get('Code', 'Unknown')

    async def put(self, data: bytes, suggested_name: str, folder: str) -> ImageAttachment:
        """Upload bytes with a single PutObject call."""
        try:
            key = build_object_key(suggested_name, folder)
        except ValueError as exc:
            raise StorageWriteError(str(exc), {"folder": folder})

        content_type = mimetypes.guess_type(key)[0] or "application/octet-stream"

        logger.debug(
            "s3_storage_put_started",
            bucket_name=self.bucket_name,
            key=key,
            size_bytes=len(data),
        )

        try:
            async with self._get_s3_client() as s3:
                await s3.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                    ServerSideEncryption='AES256',
                )
        except (ClientError, BotoCoreError) as exc:
            error_code = self._error_code(exc) if isinstance(exc, ClientError) else type(exc).__name__
            logger.error(
                "s3_storage_put_failed",
                bucket_name=self.bucket_name,
                key=key,
                error_code=error_code,
                error=str(exc),
                exc_info=True,
            )
            raise StorageWriteError(
                "Could not upload file to object storage",
                {"key": key, "error_code": error_code},
            )

        logger.info(
            "s3_storage_put_success",
            bucket_name=self.bucket_name,
            key=key,
            bytes_written=len(data),
        )

        return ImageAttachment(
            locator=f"{self.public_base_url}/{key}",
            deletion_handle=key,
        )

    async def remove(self, deletion_handle: str) -> None:
        """Delete an object.

        S3 DeleteObject is idempotent: deleting a non-existent key succeeds.
        A NoSuchKey answer from an S3-compatible service is treated the same.
        """
        try:
            async with self._get_s3_client() as s3:
                await s3.delete_object(Bucket=self.bucket_name, Key=deletion_handle)
        except ClientError as exc:
            error_code = self._error_code(exc)
            if error_code in _MISSING_OBJECT_CODES:
                logger.warning("s3_storage_remove_not_found", key=deletion_handle)
                return
            logger.error(
                "s3_storage_remove_failed",
                bucket_name=self.bucket_name,
                key=deletion_handle,
                error_code=error_code,
                error=str(exc),
            )
            raise StorageDeleteError(
                "Could not delete object from storage",
                {"key": deletion_handle, "error_code": error_code},
            )
        except BotoCoreError as exc:
            logger.error(
                "s3_storage_remove_failed",
                bucket_name=self.bucket_name,
                key=deletion_handle,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StorageDeleteError(
                "Could not reach object storage",
                {"key": deletion_handle},
            )

        logger.info("s3_storage_remove_success", bucket_name=self.bucket_name, key=deletion_handle)

    async def load(self, deletion_handle: str) -> bytes:
        try:
            async with self._get_s3_client() as s3:
                response = await s3.get_object(Bucket=self.bucket_name, Key=deletion_handle)
                return await response['Body'].read()
        except ClientError as exc:
            if self._error_code(exc) in _MISSING_OBJECT_CODES:
                raise FileNotFoundError(f"Object not found in S3: {deletion_handle}")
            raise
