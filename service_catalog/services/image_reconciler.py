"""
Image-Set Reconciler

Moves a category's image slots (the main image, and one optional image per
sub-service) from their stored state to the state a request asks for:
uploads the new bytes, decides which previously owned attachments are no
longer referenced, and builds the attachment values to persist.

A reconciler instance belongs to a single operation. Every upload it
performs is journaled, so the operation can undo them with ``rollback()``
when a later step fails.
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from service_catalog.core.errors import (
    ErrorCode,
    StorageDeleteError,
    StorageWriteError,
    validation_error,
)
from service_catalog.core.logging_config import get_logger
from service_catalog.schemas.service_category import (
    ImageAttachment,
    IncomingSubService,
    SubService,
    UploadedImage,
)
from service_catalog.storage.protocol import StorageBackend

logger = get_logger(__name__)


class ImageSetReconciler:
    """Computes and performs the uploads for one operation's image slots."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage
        self._uploaded: List[ImageAttachment] = []

    @property
    def uploaded(self) -> List[ImageAttachment]:
        """Attachments written by this reconciler so far."""
        return list(self._uploaded)

    async def reconcile_single(
        self,
        previous: Optional[ImageAttachment],
        upload: Optional[UploadedImage],
        folder: str,
    ) -> Tuple[Optional[ImageAttachment], Optional[ImageAttachment]]:
        """Reconcile one slot.

        Returns:
            (final, to_delete): without an upload the slot is unchanged and
            nothing is deleted; with one, the new attachment replaces
            ``previous``, which becomes ``to_delete``.

        Raises:
            StorageWriteError: If the upload fails
        """
        if upload is None:
            return previous, None

        (final,) = await self._put_all([upload], folder)
        return final, previous

    @staticmethod
    def validate_incoming(
        previous_items: Sequence[SubService],
        incoming: Sequence[IncomingSubService],
    ) -> None:
        """Check echoed ids and sub-service slugs before anything is uploaded.

        Raises:
            ValidationError: On a repeated id, an id foreign to this
                category, or a repeated sub-service slug
        """
        previous_ids = {item.id for item in previous_items}
        seen_ids = set()
        seen_slugs = set()
        for entry in incoming:
            entry_id = entry.fields.id
            if entry.fields.slug in seen_slugs:
                raise validation_error(
                    ErrorCode.VAL_INVALID_SUB_SERVICES,
                    "Sub-service slugs must be unique within a service category.",
                    {"slug": entry.fields.slug},
                )
            seen_slugs.add(entry.fields.slug)

            if entry_id is None:
                continue
            if entry_id in seen_ids:
                raise validation_error(
                    ErrorCode.VAL_INVALID_SUB_SERVICES,
                    "Sub-service id appears more than once.",
                    {"id": entry_id},
                )
            if entry_id not in previous_ids:
                raise validation_error(
                    ErrorCode.VAL_UNKNOWN_SUB_SERVICE,
                    "Sub-service id does not belong to this service category.",
                    {"id": entry_id},
                )
            seen_ids.add(entry_id)

    async def reconcile_array(
        self,
        previous_items: Sequence[SubService],
        incoming: Sequence[IncomingSubService],
        folder: str,
    ) -> Tuple[List[SubService], List[ImageAttachment]]:
        """Reconcile the sub-service list against the submitted entries.

        Output order follows ``incoming``. Entries without an id are new
        sub-services (any client ``imageUrl`` on them is ignored). Previous
        items missing from ``incoming`` are dropped along with their images.

        An existing entry keeps its image unless a new file is uploaded for
        it or it explicitly sends an empty ``imageUrl``, which removes it.

        Raises:
            ValidationError: An id is repeated or does not belong to this category
            StorageWriteError: If any upload fails
        """
        self.validate_incoming(previous_items, incoming)
        previous_by_id: Dict[str, SubService] = {item.id: item for item in previous_items}
        seen_ids = {entry.fields.id for entry in incoming if entry.fields.id}

        # Upload every replacement image of this call together.
        upload_positions = [i for i, entry in enumerate(incoming) if entry.upload is not None]
        stored = await self._put_all([incoming[i].upload for i in upload_positions], folder)
        new_images = dict(zip(upload_positions, stored))

        to_delete: List[ImageAttachment] = []
        final_items: List[SubService] = []

        for position, entry in enumerate(incoming):
            fields = entry.fields
            existing = previous_by_id.get(fields.id) if fields.id else None

            if existing is None:
                image = new_images.get(position)
                item_id = str(uuid4())
            else:
                item_id = existing.id
                if position in new_images:
                    image = new_images[position]
                    if existing.image is not None:
                        to_delete.append(existing.image)
                elif "image_url" in fields.model_fields_set and not fields.image_url:
                    image = None
                    if existing.image is not None:
                        to_delete.append(existing.image)
                else:
                    image = existing.image

            final_items.append(
                SubService(
                    id=item_id,
                    name=fields.name,
                    slug=fields.slug,
                    description=fields.description,
                    image=image,
                )
            )

        for item in previous_items:
            if item.id not in seen_ids and item.image is not None:
                to_delete.append(item.image)

        return final_items, to_delete

    async def rollback(self) -> None:
        """Remove everything this reconciler uploaded. Best effort."""
        journal, self._uploaded = self._uploaded, []
        if journal:
            logger.info("image_upload_rollback_started", count=len(journal))
            await remove_attachments(self.storage, journal, reason="rollback")

    async def _put_all(self, uploads: Sequence[UploadedImage], folder: str) -> List[ImageAttachment]:
        """Upload concurrently; journal every success before reporting a failure."""
        if not uploads:
            return []

        results = await asyncio.gather(
            *(self.storage.put(upload.data, upload.filename, folder) for upload in uploads),
            return_exceptions=True,
        )

        first_error: Optional[BaseException] = None
        stored: List[ImageAttachment] = []
        for result in results:
            if isinstance(result, BaseException):
                first_error = first_error or result
            else:
                self._uploaded.append(result)
                stored.append(result)

        if first_error is not None:
            logger.error(
                "image_upload_failed",
                folder=folder,
                attempted=len(uploads),
                succeeded=len(stored),
                error_type=type(first_error).__name__,
                error=str(first_error),
            )
            if isinstance(first_error, StorageWriteError) or not isinstance(first_error, Exception):
                raise first_error
            raise StorageWriteError(
                "Could not upload image",
                {"folder": folder, "error_type": type(first_error).__name__},
            ) from first_error

        return stored


async def remove_attachments(
    storage: StorageBackend,
    attachments: Sequence[ImageAttachment],
    reason: str,
) -> int:
    """Delete attachments concurrently, logging failures instead of raising.

    Returns:
        int: Number of attachments that could not be deleted
    """
    if not attachments:
        return 0

    results = await asyncio.gather(
        *(storage.remove(attachment.deletion_handle) for attachment in attachments),
        return_exceptions=True,
    )

    failures = 0
    for attachment, result in zip(attachments, results):
        if isinstance(result, StorageDeleteError):
            failures += 1
            logger.warning(
                "image_delete_failed",
                reason=reason,
                deletion_handle=attachment.deletion_handle,
                error=result.message,
            )
        elif isinstance(result, Exception):
            failures += 1
            logger.error(
                "image_delete_failed",
                reason=reason,
                deletion_handle=attachment.deletion_handle,
                error_type=type(result).__name__,
                error=str(result),
            )
        elif isinstance(result, BaseException):
            raise result

    logger.info(
        "image_delete_completed",
        reason=reason,
        requested=len(attachments),
        failed=failures,
    )
    return failures
