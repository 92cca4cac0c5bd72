"""
Service category API endpoints.

Router handles HTTP concerns (multipart parsing, status codes, response
format); ServiceCategoryService holds the business logic.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from service_catalog.api.dependencies import (
    ServiceCategoryForm,
    get_service_category_service,
    parse_service_category_form,
)
from service_catalog.core.logging_config import get_logger
from service_catalog.db.models import ServiceCategory
from service_catalog.schemas.service_category import ServiceCategoryOut
from service_catalog.services.service_category_service import ServiceCategoryService


logger = get_logger(__name__)
router = APIRouter(prefix="/services", tags=["services"])


def serialize(category: ServiceCategory) -> Dict[str, Any]:
    return ServiceCategoryOut.model_validate(category).model_dump(mode="json", by_alias=True)


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_service_category(
    form: ServiceCategoryForm = Depends(parse_service_category_form),
    service: ServiceCategoryService = Depends(get_service_category_service),
):
    """Create a service category.

    Multipart fields: name, slug, description, isActive, subServicesData
    (JSON array). Files: mainImage (required), subServiceImage_<index>.

    Raises:
        ServiceError: 400 on invalid input or missing main image,
            409 on duplicate name/slug, 502 on storage failure
    """
    logger.info(
        "service_category_create_request",
        slug=form.fields.get("slug"),
        has_main_image=form.main_image is not None,
        sub_service_count=len(form.sub_services or []),
    )

    category = await service.create_service_category(
        fields=form.fields,
        main_image=form.main_image,
        sub_services=form.sub_services or [],
    )

    return {
        "message": "Service category created successfully",
        "data": serialize(category),
    }


@router.get("/find")
async def find_all_service_categories(
    service: ServiceCategoryService = Depends(get_service_category_service),
):
    """All service categories, newest first (admin panel)."""
    categories = await service.list_service_categories()
    return [serialize(category) for category in categories]


@router.get("/public")
async def get_all_public_service_categories(
    service: ServiceCategoryService = Depends(get_service_category_service),
):
    """Active service categories, newest first (public site)."""
    categories = await service.list_public_service_categories()
    return [serialize(category) for category in categories]


@router.get("/{slug_or_id}")
async def get_service_category(
    slug_or_id: str,
    service: ServiceCategoryService = Depends(get_service_category_service),
):
    category = await service.get_service_category(slug_or_id)
    return serialize(category)


@router.put("/{category_id}")
async def update_service_category(
    category_id: str,
    form: ServiceCategoryForm = Depends(parse_service_category_form),
    service: ServiceCategoryService = Depends(get_service_category_service),
):
    """Update a service category.

    Only submitted fields change. Send subServicesData to replace the
    sub-service list: echo an entry's id to keep it, omit the id to add one.
    An existing entry keeps its image unless a new subServiceImage_<index>
    is uploaded or its imageUrl is sent empty.
    """
    logger.info(
        "service_category_update_request",
        category_id=category_id,
        fields=sorted(form.fields),
        has_main_image=form.main_image is not None,
        sub_service_count=None if form.sub_services is None else len(form.sub_services),
    )

    category = await service.update_service_category(
        category_id,
        fields=form.fields,
        main_image=form.main_image,
        sub_services=form.sub_services,
    )

    return {
        "message": "Service category updated successfully",
        "data": serialize(category),
    }


@router.delete("/{category_id}")
async def delete_service_category(
    category_id: str,
    service: ServiceCategoryService = Depends(get_service_category_service),
):
    await service.delete_service_category(category_id)
    logger.info("service_category_delete_request_completed", category_id=category_id)
    return {"message": "Service category deleted successfully."}
