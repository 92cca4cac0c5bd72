"""FastAPI dependencies for storage, services and multipart form parsing."""

import json
import mimetypes
import re
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from fastapi import Depends, Request
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from service_catalog.core.config import settings
from service_catalog.core.errors import ErrorCode, validation_error
from service_catalog.core.logging_config import get_logger
from service_catalog.db.session import get_session
from service_catalog.repositories.service_category_repository import ServiceCategoryRepository
from service_catalog.schemas.service_category import (
    IncomingSubService,
    SubServiceInput,
    UploadedImage,
)
from service_catalog.services.service_category_service import ServiceCategoryService
from service_catalog.storage.protocol import StorageBackend


logger = get_logger(__name__)

MAIN_IMAGE_FIELD = "mainImage"
SUB_SERVICES_FIELD = "subServicesData"
SUB_IMAGE_FIELD_RE = re.compile(r"^subServiceImage_(\d+)$")
IMAGE_FORMAT_ALIASES = {"MPO": "JPEG"}

# Multipart field name -> service field name
SCALAR_FIELDS = {
    "name": "name",
    "slug": "slug",
    "description": "description",
    "isActive": "is_active",
}


# ============================================================================
# Service Layer Dependencies
# ============================================================================


def get_storage(request: Request) -> StorageBackend:
    """Storage backend constructed at startup (see main.lifespan)."""
    return request.app.state.storage


def get_service_category_service(
    session: AsyncSession = Depends(get_session),
    storage: StorageBackend = Depends(get_storage),
) -> ServiceCategoryService:
    """Factory for ServiceCategoryService with dependency injection.

    Usage in endpoint:
        @router.delete("/{category_id}")
        async def delete(
            category_id: str,
            service: ServiceCategoryService = Depends(get_service_category_service)
        ):
            await service.delete_service_category(category_id)
    """
    return ServiceCategoryService(ServiceCategoryRepository(session), storage)


# ============================================================================
# Upload validation
# ============================================================================


def detect_image_mime(data: bytes) -> Optional[str]:
    """MIME type of an image identified from its bytes, or None.

    Never trust client-provided MIME types.
    """
    try:
        with Image.open(BytesIO(data)) as image:
            image_format = image.format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        return None
    if not image_format:
        return None
    # Multi-picture JPEGs from phone cameras are still JPEGs.
    return Image.MIME.get(IMAGE_FORMAT_ALIASES.get(image_format, image_format))


async def read_image_upload(upload: UploadFile, field_name: str) -> UploadedImage:
    """Read an uploaded file and check it is an allowed image within the size limit.

    Raises:
        ValidationError: File too large or not an allowed image type
    """
    data = await upload.read()

    if len(data) > settings.max_upload_size_bytes:
        raise validation_error(
            ErrorCode.VAL_FILE_TOO_LARGE,
            f"File too large. Maximum allowed: {settings.MAX_UPLOAD_SIZE_MB}MB",
            {"field": field_name, "size_bytes": len(data)},
        )

    mime = detect_image_mime(data)
    if mime not in settings.ALLOWED_MIME_TYPES:
        raise validation_error(
            ErrorCode.VAL_INVALID_FILE,
            f"Unsupported file type. Allowed: {', '.join(settings.ALLOWED_MIME_TYPES)}",
            {"field": field_name, "detected": mime, "declared": upload.content_type},
        )

    # Extension follows the detected type, not the client filename.
    stem = PurePath(upload.filename or field_name).stem or field_name
    extension = mimetypes.guess_extension(mime) or ""
    logger.debug(
        "image_upload_validated",
        field=field_name,
        detected_mime=mime,
        declared_content_type=upload.content_type,
        size_bytes=len(data),
    )
    return UploadedImage(data=data, filename=f"{stem}{extension}", content_type=mime)


def parse_sub_services(
    raw: Optional[str],
    uploads: Dict[int, UploadedImage],
) -> Optional[List[IncomingSubService]]:
    """Pair the ``subServicesData`` JSON array with ``subServiceImage_<n>`` files.

    Returns None when no sub-service data was submitted.

    Raises:
        ValidationError: Malformed JSON, invalid entries, or a file index
            with no matching entry
    """
    if raw is None:
        if uploads:
            raise validation_error(
                ErrorCode.VAL_INVALID_SUB_SERVICES,
                "Sub-service images require subServicesData.",
                {"indexes": sorted(uploads)},
            )
        return None

    try:
        entries: Any = json.loads(raw) if raw.strip() else []
    except json.JSONDecodeError:
        raise validation_error(
            ErrorCode.VAL_INVALID_SUB_SERVICES,
            "Invalid subServicesData format. Expected JSON string.",
        )
    if not isinstance(entries, list):
        raise validation_error(
            ErrorCode.VAL_INVALID_SUB_SERVICES,
            "subServicesData must be a JSON array.",
        )

    stray = sorted(index for index in uploads if index >= len(entries))
    if stray:
        raise validation_error(
            ErrorCode.VAL_INVALID_SUB_SERVICES,
            "Sub-service image has no matching sub-service entry.",
            {"indexes": stray},
        )

    incoming = []
    for index, entry in enumerate(entries):
        try:
            fields = SubServiceInput.model_validate(entry)
        except PydanticValidationError as exc:
            raise validation_error(
                ErrorCode.VAL_INVALID_SUB_SERVICES,
                f"Invalid sub-service at position {index}.",
                {"index": index, "errors": [error["msg"] for error in exc.errors()]},
            )
        incoming.append(IncomingSubService(fields=fields, upload=uploads.get(index)))
    return incoming


# ============================================================================
# Multipart form
# ============================================================================


@dataclass
class ServiceCategoryForm:
    """A parsed service-category multipart request."""
    fields: Dict[str, str] = field(default_factory=dict)
    main_image: Optional[UploadedImage] = None
    sub_services: Optional[List[IncomingSubService]] = None


async def parse_service_category_form(request: Request) -> ServiceCategoryForm:
    """Parse scalar fields, the JSON sub-service list and the image files.

    Files under any other field name are ignored.
    """
    form = await request.form()
    parsed = ServiceCategoryForm()
    sub_uploads: Dict[int, UploadedImage] = {}
    raw_sub_services: Optional[str] = None

    try:
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key == MAIN_IMAGE_FIELD:
                    if parsed.main_image is None:
                        parsed.main_image = await read_image_upload(value, key)
                    continue
                match = SUB_IMAGE_FIELD_RE.match(key)
                if match:
                    sub_uploads[int(match.group(1))] = await read_image_upload(value, key)
                else:
                    logger.debug("unexpected_upload_field_ignored", field=key)
            elif key == SUB_SERVICES_FIELD:
                raw_sub_services = value
            elif key in SCALAR_FIELDS:
                parsed.fields[SCALAR_FIELDS[key]] = value
    finally:
        await form.close()

    parsed.sub_services = parse_sub_services(raw_sub_services, sub_uploads)
    return parsed
