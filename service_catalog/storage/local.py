"""Local filesystem storage backend."""

import aiofiles
import aiofiles.os
from pathlib import Path
from uuid import uuid4

from service_catalog.core.errors import StorageDeleteError, StorageWriteError
from service_catalog.core.logging_config import get_logger
from service_catalog.schemas.service_category import ImageAttachment
from service_catalog.storage.protocol import build_object_key


logger = get_logger(__name__)


class LocalStorageBackend:
    """Local filesystem storage implementation.

    Objects live under ``base_path`` and are served by a StaticFiles mount at
    ``public_path``. The deletion handle is the object key relative to
    ``base_path``.
    """

    def __init__(self, base_path: str, public_path: str = "/uploads"):
        """Initialize local storage backend.

        Args:
            base_path: Root directory for file storage
            public_path: URL path the static files mount serves base_path on
        """
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_path = public_path.rstrip("/")

    def get_local_path(self, key: str) -> Path:
        """Absolute path for an object key, refusing keys outside base_path."""
        full_path = (self.base_path / key).resolve()
        if self.base_path not in full_path.parents:
            raise ValueError(f"Object key escapes storage root: {key}")
        return full_path

    def get_url(self, key: str) -> str:
        return f"{self.public_path}/{key}"

    async def put(self, data: bytes, suggested_name: str, folder: str) -> ImageAttachment:
        """Write bytes atomically: temp file first, then rename into place."""
        try:
            key = build_object_key(suggested_name, folder)
            full_path = self.get_local_path(key)
        except ValueError as exc:
            raise StorageWriteError(str(exc), {"folder": folder})

        tmp_path = full_path.with_name(f".{full_path.name}.{uuid4().hex}.tmp")

        logger.debug(
            "local_storage_put_started",
            key=key,
            full_path=str(full_path),
            size_bytes=len(data),
        )

        try:
            await aiofiles.os.makedirs(full_path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, 'wb') as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, full_path)
        except OSError as exc:
            logger.error(
                "local_storage_put_failed",
                key=key,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            try:
                await aiofiles.os.remove(tmp_path)
            except FileNotFoundError:
                pass
            except OSError as cleanup_error:
                logger.warning(
                    "local_storage_tmp_cleanup_failed",
                    tmp_path=str(tmp_path),
                    error=str(cleanup_error),
                )
            raise StorageWriteError("Could not write file to storage", {"key": key})

        logger.info(
            "local_storage_put_success",
            key=key,
            bytes_written=len(data),
        )

        return ImageAttachment(locator=self.get_url(key), deletion_handle=key)

    async def remove(self, deletion_handle: str) -> None:
        """Delete a file. A missing file counts as already deleted."""
        try:
            full_path = self.get_local_path(deletion_handle)
        except ValueError as exc:
            raise StorageDeleteError(str(exc), {"key": deletion_handle})

        try:
            await aiofiles.os.remove(full_path)
        except FileNotFoundError:
            logger.warning(
                "local_storage_remove_not_found",
                key=deletion_handle,
                full_path=str(full_path),
            )
            return
        except OSError as exc:
            logger.error(
                "local_storage_remove_failed",
                key=deletion_handle,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            raise StorageDeleteError("Could not delete file from storage", {"key": deletion_handle})

        logger.info("local_storage_remove_success", key=deletion_handle)

    async def load(self, deletion_handle: str) -> bytes:
        full_path = self.get_local_path(deletion_handle)
        async with aiofiles.open(full_path, 'rb') as f:
            return await f.read()
