"""Pydantic models for service categories, sub-services and image attachments."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


class ImageAttachment(BaseModel):
    """A stored image: where clients fetch it and how the store deletes it.

    ``deletion_handle`` is opaque. It is recorded when the object is written
    and must never be derived from ``locator``.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    locator: str = Field(serialization_alias="url")
    deletion_handle: str = Field(serialization_alias="deletionHandle")


class SubService(BaseModel):
    """Sub-service as persisted inside its owning category."""
    id: str
    name: str
    slug: str
    description: str
    image: Optional[ImageAttachment] = None


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{field} is required")
    return str(value).strip()


class SubServiceInput(BaseModel):
    """One entry of the ``subServicesData`` JSON array."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: str
    slug: str
    description: str
    image_url: Optional[str] = None

    @field_validator("id", "image_url", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_required(cls, v, info):
        return _require_text(v, info.field_name)

    @field_validator("slug", mode="before")
    @classmethod
    def normalize_slug(cls, v):
        return _require_text(v, "slug").lower()


class ServiceCategoryFields(BaseModel):
    """Scalar fields of a category as submitted on update.

    Every field is optional; an omitted field keeps its stored value.
    """
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_optional(cls, v, info):
        if v is None:
            return None
        return _require_text(v, info.field_name)

    @field_validator("slug", mode="before")
    @classmethod
    def normalize_slug(cls, v):
        if v is None:
            return None
        return _require_text(v, "slug").lower()


class ServiceCategoryCreate(ServiceCategoryFields):
    """Scalar fields required to create a category."""
    name: str
    slug: str
    description: str
    is_active: bool = True


@dataclass
class UploadedImage:
    """Image bytes received with a request, not yet stored."""
    data: bytes
    filename: str
    content_type: str = "application/octet-stream"


@dataclass
class IncomingSubService:
    """A sub-service entry paired with the file uploaded for its slot."""
    fields: SubServiceInput
    upload: Optional[UploadedImage] = None


# ============================================================================
# Response models
# ============================================================================


class SubServiceOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    slug: str
    description: str
    image: Optional[ImageAttachment] = None

    @computed_field(alias="imageUrl")
    @property
    def image_url(self) -> Optional[str]:
        return self.image.locator if self.image else None


class ServiceCategoryOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    slug: str
    description: str
    main_image: ImageAttachment
    sub_services: List[SubServiceOut] = []
    is_active: bool
    created_at: datetime
    updated_at: datetime
