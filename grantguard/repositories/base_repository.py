from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from grantguard.utils.logging import get_logger

ModelType = TypeVar("ModelType")

LOGGER = get_logger(__name__)


class BaseRepository(Generic[ModelType]):
    """Shared persistence helpers for one enforcement table.

    Writes flush but never commit. A service replacing a section's derived
    rows (delete, recreate, upsert) commits once at the end, so readers never
    observe a half-replaced section.
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        self.session = session
        self.model = model

    def _log_failure(self, action: str, error: SQLAlchemyError, **context: Any) -> None:
        LOGGER.error(
            f"{self.model.__name__} {action} failed: {error}",
            extra={key: str(value) for key, value in context.items()},
            exc_info=True
        )

    async def get_by_id(self, id: UUID) -> Optional[ModelType]:
        try:
            result = await self.session.execute(select(self.model).where(self.model.id == id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._log_failure("lookup", e, id=id)
            raise

    async def create(self, **fields) -> ModelType:
        """Insert one row and flush so server defaults and the id are populated."""
        try:
            instance = self.model(**fields)
            self.session.add(instance)
            await self.session.flush()
            return instance
        except SQLAlchemyError as e:
            self._log_failure("insert", e)
            raise

    async def bulk_create(self, rows: List[Dict[str, Any]]) -> List[ModelType]:
        """Insert several rows with a single flush.

        Args:
            rows: Column values, one dict per row

        Returns:
            The new rows in input order
        """
        if not rows:
            return []
        try:
            instances = [self.model(**row) for row in rows]
            self.session.add_all(instances)
            await self.session.flush()
            return instances
        except SQLAlchemyError as e:
            self._log_failure("bulk insert", e, count=len(rows))
            raise

    async def update(self, id: UUID, **fields) -> Optional[ModelType]:
        """Set columns on an existing row.

        Unknown field names are ignored. ``updated_at`` is stamped when the
        model has one.

        Returns:
            The updated row, or None when no row has this id
        """
        try:
            instance = await self.get_by_id(id)
            if instance is None:
                return None

            for key, value in fields.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)
            if hasattr(instance, "updated_at"):
                instance.updated_at = datetime.now(timezone.utc)

            await self.session.flush()
            return instance
        except SQLAlchemyError as e:
            self._log_failure("update", e, id=id)
            raise

    async def delete_where(self, **criteria: Any) -> int:
        """Bulk delete rows whose columns equal the given values.

        Returns:
            Number of rows removed
        """
        try:
            stmt = delete(self.model)
            for column, value in criteria.items():
                stmt = stmt.where(getattr(self.model, column) == value)
            result = await self.session.execute(stmt)
            await self.session.flush()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            self._log_failure("delete", e, **criteria)
            raise
