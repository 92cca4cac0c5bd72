"""Repository for ServiceCategory models."""

from typing import List, Optional
from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from service_catalog.core.errors import PersistenceError, duplicate_error
from service_catalog.core.logging_config import get_logger
from service_catalog.db.models import ServiceCategory
from service_catalog.repositories.base import BaseRepository


logger = get_logger(__name__)


class ServiceCategoryRepository(BaseRepository[ServiceCategory]):
    """Persistence for service categories.

    The unique indexes on ``name`` and ``slug`` are authoritative: a lost
    race between two creates surfaces from ``save`` as DuplicateError.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(ServiceCategory, session)

    async def find_by_id(self, category_id: str) -> Optional[ServiceCategory]:
        return await self.get(category_id)

    async def find_by_slug(self, slug: str) -> Optional[ServiceCategory]:
        stmt = select(self.model).where(self.model.slug == slug.strip().lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_name_or_slug(
        self,
        name: Optional[str],
        slug: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> List[ServiceCategory]:
        """Categories whose name or slug collides with the given values."""
        conditions = []
        if name:
            conditions.append(self.model.name == name)
        if slug:
            conditions.append(self.model.slug == slug)
        if not conditions:
            return []

        stmt = select(self.model).where(or_(*conditions))
        if exclude_id:
            stmt = stmt.where(self.model.id != exclude_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self, active_only: bool = False) -> List[ServiceCategory]:
        """All categories, newest first."""
        stmt = select(self.model).order_by(self.model.created_at.desc())
        if active_only:
            stmt = stmt.where(self.model.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def save(self, category: ServiceCategory) -> ServiceCategory:
        """Insert or update a category and commit.

        Raises:
            DuplicateError: name or slug already taken (unique index)
            PersistenceError: any other database failure
        """
        # Captured up front: a rollback expires the instance.
        identity = {"id": category.id, "name": category.name, "slug": category.slug}
        self.session.add(category)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            message = str(exc.orig).lower()
            field = "slug" if "slug" in message else "name"
            logger.warning(
                "service_category_unique_violation",
                category_id=identity["id"],
                field=field,
                error=str(exc.orig),
            )
            raise duplicate_error(field, identity[field])
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "service_category_save_failed",
                category_id=identity["id"],
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            raise PersistenceError(
                "Could not save service category",
                {"id": identity["id"]},
            )
        return category

    async def delete_by_id(self, category_id: str) -> bool:
        """Delete a category by id; False if it did not exist."""
        instance = await self.get(category_id)
        if instance is None:
            return False
        try:
            await self.session.delete(instance)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "service_category_delete_failed",
                category_id=category_id,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            raise PersistenceError(
                "Could not delete service category",
                {"id": category_id},
            )
        return True
