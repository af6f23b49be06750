import functools
from typing import Generic, TypeVar, Type, List, Optional, Any, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError, OperationalError, InterfaceError, DisconnectionError

from jobqueue.core.exceptions import StoreUnavailable
from jobqueue.core.logger import error
from jobqueue.core.setup_logger import db_logger
from jobqueue.db import Base

ModelType = TypeVar("ModelType", bound=Base)

# errors meaning the backend could not be reached or is temporarily locked
UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


def store_operation(method):
    """
    Wrap a repository coroutine taking `db` as its first argument.
    Rolls the session back on any SQLAlchemy error; connection-level
    failures are re-raised as StoreUnavailable.
    """

    @functools.wraps(method)
    async def wrapper(self, db: AsyncSession, *args, **kwargs):
        try:
            return await method(self, db, *args, **kwargs)
        except UNAVAILABLE_ERRORS as e:
            await db.rollback()
            error(db_logger, "Job store unavailable", context={
                "operation": method.__name__,
                "error": str(e),
            })
            raise StoreUnavailable(str(e)) from e
        except SQLAlchemyError:
            await db.rollback()
            raise

    return wrapper


class AsyncBaseRepository(Generic[ModelType]):
    def __init__(self, model: Type[ModelType]):
        self.model = model

    def _where(self, stmt, condition: Optional[Dict[str, Any]]):
        """Apply attribute == value (or IN for lists) filters, skipping None values"""
        where_conditions = []
        for attr, value in (condition or {}).items():
            if value is None or not hasattr(self.model, attr):
                continue
            column = getattr(self.model, attr)
            if isinstance(value, (list, tuple)):
                where_conditions.append(column.in_(value))
            else:
                where_conditions.append(column == value)

        if where_conditions:
            stmt = stmt.where(and_(*where_conditions))
        return stmt

    @store_operation
    async def create(self, db: AsyncSession, *, obj_in: Dict[str, Any]) -> ModelType:
        """
        Create a new record.
        """
        db_obj = self.model(**obj_in)
        db.add(db_obj)
        await db.flush()  # Get ID without committing transaction
        await db.refresh(db_obj)
        return db_obj

    @store_operation
    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        """
        Get a record by id.
        """
        stmt = select(self.model).where(self.model.id == id).execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @store_operation
    async def get_by_condition(
            self,
            db: AsyncSession,
            condition: Dict[str, Any],
            skip: int = 0,
            limit: Optional[int] = None,
            order_by=None,
    ) -> List[ModelType]:
        """
        Get records based on conditions.
        """
        stmt = self._where(select(self.model), condition)
        stmt = stmt.order_by(*(order_by if order_by is not None else [self.model.id]))

        if skip:
            stmt = stmt.offset(skip)
        if limit:
            stmt = stmt.limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())
