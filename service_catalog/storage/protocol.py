"""Storage backend protocol definition."""

import os
import re
from typing import Protocol
from uuid import uuid4

from service_catalog.schemas.service_category import ImageAttachment


class StorageBackend(Protocol):
    """Protocol defining the interface for object storage backends.

    This allows seamless switching between local filesystem and cloud storage
    without changing application code.
    """

    async def put(self, data: bytes, suggested_name: str, folder: str) -> ImageAttachment:
        """Store bytes and return their attachment.

        Args:
            data: Object contents
            suggested_name: Client-side filename, used only for its extension
            folder: Logical folder (e.g. "services/main")

        Returns:
            ImageAttachment: locator for clients and opaque deletion handle

        Raises:
            StorageWriteError: If nothing usable was stored
        """
        ...

    async def remove(self, deletion_handle: str) -> None:
        """Delete an object. Removing a missing object is not an error.

        Raises:
            StorageDeleteError: On transport or permission failures
        """
        ...

    async def load(self, deletion_handle: str) -> bytes:
        """Read an object back.

        Raises:
            FileNotFoundError: If the object does not exist
        """
        ...


_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,8}$")


def build_object_key(suggested_name: str, folder: str) -> str:
    """Generate a unique object key inside ``folder``.

    Only a sanitized extension survives from the client filename, so keys
    never contain user-controlled path segments.

    Raises:
        ValueError: If the folder is empty or contains traversal patterns
    """
    folder = (folder or "").strip().strip("/")
    if not folder:
        raise ValueError("Folder cannot be empty")
    if ".." in folder.split("/"):
        raise ValueError("Path traversal patterns (..) are not allowed")

    ext = os.path.splitext(os.path.basename(suggested_name or ""))[1].lower()
    if not _EXTENSION_RE.match(ext):
        ext = ""
    return f"{folder}/{uuid4().hex}{ext}"
