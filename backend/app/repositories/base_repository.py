# backend/app/repositories/base_repository.py
"""
Base repository for the payments backend.

Repositories flush but never commit; the service that owns the unit of work
commits or rolls back. Every SQLAlchemy failure surfaces as
RepositoryException with the driver error chained as ``__cause__``.
"""

import logging
from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Shared data access for one model class.

    Attributes:
        db: SQLAlchemy session (shared with the calling service)
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def _fail(self, action: str, exc: SQLAlchemyError) -> RepositoryException:
        self.logger.error(f"Error {action} {self.model.__name__}: {str(exc)}")
        return RepositoryException(f"Failed {action} {self.model.__name__}: {str(exc)}")

    def get_by_id(self, id: str) -> Optional[T]:
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            raise self._fail("loading", e) from e

    def create(self, **kwargs) -> T:
        """
        Insert a row and flush it so generated keys are available.

        An IntegrityError rolls the session back and is re-raised as
        RepositoryException with the original error as ``__cause__``, so
        callers can tell a uniqueness race from other failures.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.warning("Integrity error creating %s: %s", self.model.__name__, exc)
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.db.rollback()
            raise self._fail("creating", e) from e

    def update(self, id: str, **kwargs) -> Optional[T]:
        """Set the given attributes on the row with ``id``; None when it does not exist."""
        entity = self.get_by_id(id)
        if entity is None:
            return None
        for key, value in kwargs.items():
            if hasattr(entity, key):
                setattr(entity, key, value)
        self.flush()
        return entity

    def flush(self) -> None:
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            raise self._fail("flushing", e) from e

    def exists(self, **kwargs) -> bool:
        return self.find_one_by(**kwargs) is not None

    def count(self, **kwargs) -> int:
        try:
            return self._build_query().filter_by(**kwargs).count()
        except SQLAlchemyError as e:
            raise self._fail("counting", e) from e

    def find_one_by(self, **kwargs) -> Optional[T]:
        return self._execute_first(self._build_query().filter_by(**kwargs))

    # Query helpers for subclasses

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            raise self._fail("querying", e) from e

    def _execute_first(self, query: Query) -> Optional[T]:
        try:
            return query.first()
        except SQLAlchemyError as e:
            raise self._fail("querying", e) from e


__all__: List[str] = ["BaseRepository"]
