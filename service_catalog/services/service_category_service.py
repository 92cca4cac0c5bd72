"""
Service Category Service - Business Logic Orchestration

Create, update and delete service categories while keeping the object store
consistent with the database:

- create: uploads are rolled back if anything after them fails
- update: new uploads are rolled back on failure; replaced images are only
  deleted after the new state has been committed
- delete: image deletion is best effort and never blocks removing the record

Does NOT know about HTTP (works with parsed fields and raw bytes).
"""
import asyncio
from typing import Any, List, Mapping, Optional, Sequence, Type, TypeVar, Union
from uuid import uuid4

from pydantic import BaseModel, ValidationError as PydanticValidationError

from service_catalog.core.config import settings
from service_catalog.core.errors import (
    ErrorCode,
    duplicate_error,
    not_found_error,
    validation_error,
)
from service_catalog.core.logging_config import get_logger
from service_catalog.db.models import ServiceCategory
from service_catalog.repositories.service_category_repository import ServiceCategoryRepository
from service_catalog.schemas.service_category import (
    ImageAttachment,
    IncomingSubService,
    ServiceCategoryCreate,
    ServiceCategoryFields,
    SubService,
    UploadedImage,
)
from service_catalog.services.image_reconciler import ImageSetReconciler, remove_attachments
from service_catalog.storage.protocol import StorageBackend

logger = get_logger(__name__)

FieldsModel = TypeVar("FieldsModel", bound=BaseModel)


def parse_fields(model: Type[FieldsModel], fields: Union[FieldsModel, Mapping[str, Any]]) -> FieldsModel:
    """Validate scalar fields, reporting problems as a ValidationError."""
    if isinstance(fields, model):
        return fields
    try:
        return model.model_validate(dict(fields))
    except PydanticValidationError as exc:
        problems = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        missing = ", ".join(problem["field"] for problem in problems)
        raise validation_error(
            ErrorCode.VAL_MISSING_FIELD,
            f"Missing or invalid fields: {missing}",
            {"errors": problems},
        )


class ServiceCategoryService:
    """
    Core service for service-category operations.

    Responsibilities:
    - Validate input and enforce name/slug uniqueness
    - Drive the ImageSetReconciler for main and sub-service images
    - Persist through the repository
    - Roll back uploads on failure, delete replaced images on success
    """

    def __init__(
        self,
        repository: ServiceCategoryRepository,
        storage: StorageBackend,
        main_image_folder: str = settings.MAIN_IMAGE_FOLDER,
        sub_image_folder: str = settings.SUB_IMAGE_FOLDER,
    ):
        self.repository = repository
        self.storage = storage
        self.main_image_folder = main_image_folder
        self.sub_image_folder = sub_image_folder

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_service_category(
        self,
        fields: Union[ServiceCategoryCreate, Mapping[str, Any]],
        main_image: Optional[UploadedImage],
        sub_services: Sequence[IncomingSubService] = (),
    ) -> ServiceCategory:
        """
        Create a category with its main image and sub-services.

        Flow:
        1. Validate fields, sub-service entries and the main image
        2. Pre-check name/slug uniqueness
        3. Upload main and sub-service images concurrently
        4. Persist; on any failure remove every upload of this request

        Raises:
            ValidationError: Missing fields or main image, bad sub-services
            DuplicateError: Name or slug already used
            StorageWriteError: An upload failed
            PersistenceError: The database write failed
        """
        data = parse_fields(ServiceCategoryCreate, fields)
        # Ids are meaningless for a category that does not exist yet.
        entries = [
            IncomingSubService(entry.fields.model_copy(update={"id": None}), entry.upload)
            for entry in sub_services
        ]
        ImageSetReconciler.validate_incoming([], entries)

        if main_image is None:
            logger.warning("service_category_create_rejected", phase="validating", reason="missing_main_image")
            raise validation_error(ErrorCode.VAL_MISSING_MAIN_IMAGE, "Main image is required.")

        await self._ensure_unique(data.name, data.slug)

        category_id = str(uuid4())
        logger.info(
            "service_category_create_started",
            phase="uploading",
            category_id=category_id,
            slug=data.slug,
            sub_service_count=len(entries),
        )

        reconciler = ImageSetReconciler(self.storage)
        try:
            main_attachment, _, sub_items, _ = await self._reconcile(
                reconciler, None, main_image, [], entries
            )

            category = ServiceCategory(
                id=category_id,
                name=data.name,
                slug=data.slug,
                description=data.description,
                is_active=data.is_active,
            )
            category.main_attachment = main_attachment
            category.sub_service_items = sub_items

            await self.repository.save(category)
        except Exception as exc:
            logger.warning(
                "service_category_create_failed",
                phase="rolling_back",
                category_id=category_id,
                uploaded=len(reconciler.uploaded),
                error_type=type(exc).__name__,
            )
            await reconciler.rollback()
            raise

        logger.info(
            "service_category_created",
            phase="done",
            category_id=category.id,
            slug=category.slug,
            uploaded=len(reconciler.uploaded),
        )
        return category

    async def update_service_category(
        self,
        category_id: str,
        fields: Union[ServiceCategoryFields, Mapping[str, Any]],
        main_image: Optional[UploadedImage] = None,
        sub_services: Optional[Sequence[IncomingSubService]] = None,
    ) -> ServiceCategory:
        """
        Update scalar fields, images and sub-services of a category.

        Omitted fields keep their values. ``sub_services=None`` leaves the
        sub-service list untouched; a sequence replaces it (see
        ImageSetReconciler.reconcile_array).

        Attachments that are no longer referenced are deleted only after the
        update is committed; if the commit fails the new uploads are removed
        and the stored images stay as they were.

        Raises:
            NotFoundError: Unknown category id
            ValidationError: Invalid fields or sub-service entries
            DuplicateError: Name or slug used by another category
            StorageWriteError: An upload failed
            PersistenceError: The database write failed
        """
        category = await self.repository.find_by_id(category_id)
        if category is None:
            raise not_found_error(category_id)

        data = parse_fields(ServiceCategoryFields, fields)
        previous_main = category.main_attachment
        previous_items = category.sub_service_items
        if sub_services is not None:
            ImageSetReconciler.validate_incoming(previous_items, sub_services)
        await self._ensure_unique(data.name, data.slug, exclude_id=category.id)

        logger.info(
            "service_category_update_started",
            phase="uploading",
            category_id=category_id,
            replaces_main_image=main_image is not None,
            sub_service_count=None if sub_services is None else len(sub_services),
        )

        reconciler = ImageSetReconciler(self.storage)
        try:
            if sub_services is None:
                main_attachment, replaced_main = await reconciler.reconcile_single(
                    previous_main, main_image, self.main_image_folder
                )
                sub_items, to_delete = previous_items, []
            else:
                main_attachment, replaced_main, sub_items, to_delete = await self._reconcile(
                    reconciler, previous_main, main_image, previous_items, sub_services
                )

            for name, value in data.model_dump(exclude_none=True).items():
                setattr(category, name, value)
            category.main_attachment = main_attachment
            category.sub_service_items = sub_items

            await self.repository.save(category)
        except Exception as exc:
            logger.warning(
                "service_category_update_failed",
                phase="rolling_back",
                category_id=category_id,
                uploaded=len(reconciler.uploaded),
                error_type=type(exc).__name__,
            )
            await reconciler.rollback()
            raise

        if replaced_main is not None:
            to_delete = [replaced_main, *to_delete]

        logger.info(
            "service_category_updated",
            phase="cleaning_up",
            category_id=category_id,
            uploaded=len(reconciler.uploaded),
            to_delete=len(to_delete),
        )
        await remove_attachments(self.storage, to_delete, reason="replaced")
        return category

    async def delete_service_category(self, category_id: str) -> None:
        """
        Delete a category and every image it owns.

        Image deletion failures are logged and never stop the record from
        being removed: the database decides what is still in use.

        Raises:
            NotFoundError: Unknown category id
            PersistenceError: The database delete failed
        """
        category = await self.repository.find_by_id(category_id)
        if category is None:
            raise not_found_error(category_id)

        attachments = category.attachments()
        failed = await remove_attachments(self.storage, attachments, reason="category_deleted")
        await self.repository.delete_by_id(category_id)

        logger.info(
            "service_category_deleted",
            phase="done",
            category_id=category_id,
            images=len(attachments),
            image_delete_failures=failed,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_service_categories(self) -> List[ServiceCategory]:
        return await self.repository.list_all()

    async def list_public_service_categories(self) -> List[ServiceCategory]:
        return await self.repository.list_all(active_only=True)

    async def get_service_category(self, slug_or_id: str) -> ServiceCategory:
        """Look a category up by id, falling back to its slug.

        Raises:
            NotFoundError: Neither id nor slug matches
        """
        category = await self.repository.find_by_id(slug_or_id)
        if category is None:
            category = await self.repository.find_by_slug(slug_or_id)
        if category is None:
            raise not_found_error(slug_or_id)
        return category

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_unique(
        self,
        name: Optional[str],
        slug: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> None:
        """Fast-path uniqueness check; the unique index stays authoritative."""
        clashes = await self.repository.find_by_name_or_slug(name, slug, exclude_id=exclude_id)
        for clash in clashes:
            if name and clash.name == name:
                raise duplicate_error("name", name)
        for clash in clashes:
            if slug and clash.slug == slug:
                raise duplicate_error("slug", slug)

    async def _reconcile(
        self,
        reconciler: ImageSetReconciler,
        previous_main: Optional[ImageAttachment],
        main_image: Optional[UploadedImage],
        previous_items: Sequence[SubService],
        sub_services: Sequence[IncomingSubService],
    ):
        """Run both slot kinds concurrently and wait for both to settle."""
        results = await asyncio.gather(
            reconciler.reconcile_single(previous_main, main_image, self.main_image_folder),
            reconciler.reconcile_array(previous_items, sub_services, self.sub_image_folder),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        (main_attachment, replaced_main), (sub_items, to_delete) = results
        return main_attachment, replaced_main, sub_items, to_delete
