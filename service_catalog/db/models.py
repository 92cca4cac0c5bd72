"""SQLAlchemy models for the application."""

from datetime import datetime, timezone
from typing import Any, List, Optional
from uuid import uuid4
from sqlalchemy import String, Boolean, JSON, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from service_catalog.db.base import Base
from service_catalog.schemas.service_category import ImageAttachment, SubService


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceCategory(Base):
    """A service category with its main image and ordered sub-services.

    Sub-services are owned by the category and stored inline as a JSON list,
    so one row write persists the whole aggregate.
    """
    __tablename__ = "service_categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # {"locator": ..., "deletion_handle": ...}
    main_image: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    # [{"id", "name", "slug", "description", "image": {...} | None}, ...]
    sub_services: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    @property
    def main_attachment(self) -> Optional[ImageAttachment]:
        return ImageAttachment(**self.main_image) if self.main_image else None

    @main_attachment.setter
    def main_attachment(self, attachment: ImageAttachment) -> None:
        self.main_image = attachment.model_dump()

    @property
    def sub_service_items(self) -> List[SubService]:
        return [SubService.model_validate(item) for item in (self.sub_services or [])]

    @sub_service_items.setter
    def sub_service_items(self, items: List[SubService]) -> None:
        # A new list object so the JSON column is flagged as changed.
        self.sub_services = [item.model_dump() for item in items]

    def attachments(self) -> List[ImageAttachment]:
        """Every attachment this category currently owns."""
        owned = [self.main_attachment] if self.main_image else []
        owned.extend(item.image for item in self.sub_service_items if item.image)
        return owned
