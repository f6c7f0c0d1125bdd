from __future__ import annotations

import time
from collections.abc import Callable
from functools import wraps
from typing import Any, Generic, ParamSpec, TypeVar

from loguru import logger
from pydantic import BaseModel
from sqlalchemy import func, select

from . import database
from .database import with_retry

SchemaT = TypeVar("SchemaT", bound=BaseModel)
T = TypeVar("T")
P = ParamSpec("P")

SLOW_QUERY_SECONDS = 1.0


def timed(func: Callable[P, T]) -> Callable[P, T]:
    """Log the wall time of a DB call (including retries) when it is slow."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start
            if elapsed >= SLOW_QUERY_SECONDS:
                logger.warning(f"{func.__qualname__} took {elapsed:.2f}s")
            else:
                logger.trace(f"{func.__qualname__} took {elapsed * 1000:.1f}ms")

    return wrapper


def build_filters(model_class: type, kwargs: dict[str, Any]) -> list[Any]:
    """Translate ``field__op=value`` keyword filters into SQLAlchemy clauses."""
    filters = []
    for key, value in kwargs.items():
        if "__" in key:
            field_name, operator = key.rsplit("__", 1)
            column = getattr(model_class, field_name)
            if operator == "gt":
                filters.append(column > value)
            elif operator == "gte":
                filters.append(column >= value)
            elif operator == "lt":
                filters.append(column < value)
            elif operator == "lte":
                filters.append(column <= value)
            elif operator == "ne":
                filters.append(column != value)
            elif operator == "in":
                filters.append(column.in_(value))
            else:
                raise ValueError(f"Unknown filter operator: {operator}")
        else:
            filters.append(getattr(model_class, key) == value)
    return filters


class BaseDBService(Generic[SchemaT]):
    """Base class with common CRUD operations.

    Each method manages its own session:
    SessionLocal() -> try/commit -> except/rollback -> finally/close

    All methods decorated with:
    - @timed: Measure execution time (including all retries)
    - @with_retry(max_retries=10): Retry on database locks
    """

    model_class: type
    schema_class: type[SchemaT]

    @timed
    @with_retry(max_retries=10)
    def get(self, id: int) -> SchemaT | None:
        """Get single record by ID."""
        db = database.SessionLocal()
        try:
            obj = db.get(self.model_class, id)
            return self._to_schema(obj) if obj else None
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def create(self, data: SchemaT) -> SchemaT:
        """Create new record from a schema; unset fields fall back to model defaults."""
        db = database.SessionLocal()
        try:
            values = data.model_dump(
                exclude_unset=True, exclude=set(type(data).model_computed_fields)
            )
            logger.debug(f"Creating {self.model_class.__name__}: {values}")
            obj = self.model_class(**values)
            db.add(obj)
            db.commit()
            db.refresh(obj)
            logger.debug(f"Created {self.model_class.__name__} with id={getattr(obj, 'id', 'N/A')}")
            return self._to_schema(obj)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to create {self.model_class.__name__}: {e}")
            raise
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def query(
        self,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        **kwargs: Any,
    ) -> list[SchemaT]:
        """Flexible query with ``field__op`` operators."""
        db = database.SessionLocal()
        try:
            stmt = select(self.model_class).where(*build_filters(self.model_class, kwargs))
            if order_by:
                order_column = getattr(self.model_class, order_by)
                stmt = stmt.order_by(order_column.asc() if ascending else order_column.desc())
            if limit:
                stmt = stmt.limit(limit)
            results = db.execute(stmt).scalars().all()
            return [self._to_schema(r) for r in results]
        finally:
            db.close()

    @timed
    @with_retry(max_retries=10)
    def count(self, **kwargs: Any) -> int:
        """Count records matching filters."""
        db = database.SessionLocal()
        try:
            stmt = (
                select(func.count())
                .select_from(self.model_class)
                .where(*build_filters(self.model_class, kwargs))
            )
            return db.execute(stmt).scalar() or 0
        finally:
            db.close()

    def _to_schema(self, orm_obj: Any) -> SchemaT:
        """Convert ORM to Pydantic."""
        return self.schema_class.model_validate(orm_obj)
