# backend/mathbridge/repositories/base_repository.py
"""
Base Repository Pattern for the MathBridge scheduling core.

Repositories own every query. They flush but never commit; the service layer
decides when a unit of work ends. Driver failures are translated here:
timeouts and lost connections become TransientException, lost optimistic
updates become ConcurrentModificationException, anything else unexpected
becomes RepositoryException. IntegrityError is left for the service layer,
which knows which business conflict a violated constraint stands for.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Query, Session
from sqlalchemy.orm.exc import StaleDataError

from mathbridge.database.session_utils import get_dialect_name

from ..core.exceptions import (
    ConcurrentModificationException,
    RepositoryException,
    TransientException,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


def translate_db_error(exc: SQLAlchemyError, action: str) -> Exception:
    """Map a SQLAlchemy failure onto the exception the caller should see."""
    if isinstance(exc, StaleDataError):
        return ConcurrentModificationException(details={"action": action})
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return TransientException(
            "The scheduling store is temporarily unavailable",
            code="STORE_UNAVAILABLE",
            details={"action": action, "error_type": type(exc).__name__},
        )
    return RepositoryException(f"Failed to {action}: {exc}")


class IRepository(ABC, Generic[T]):
    """Minimal interface every scheduling repository provides."""

    @abstractmethod
    def get_by_id(self, id: str, for_update: bool = False) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        Args:
            id: The primary key value
            for_update: Take a row lock (SELECT ... FOR UPDATE) where supported

        Returns:
            The entity if found, None otherwise
        """

    @abstractmethod
    def add(self, entity: T) -> T:
        """Stage a new entity and flush so its id and defaults are populated."""

    @abstractmethod
    def update(self, entity: T) -> T:
        """Flush pending changes on an already-loaded entity."""


class BaseRepository(IRepository[T]):
    """
    Concrete base repository with the shared data access patterns.

    Attributes:
        db: SQLAlchemy session (managed by the service layer)
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    def _query(self, for_update: bool = False) -> Query:
        query = self.db.query(self.model)
        if for_update:
            # SQLite ignores FOR UPDATE; the whole database is locked per write anyway
            query = query.with_for_update(of=self.model).populate_existing()
        return query

    def _fail(self, exc: SQLAlchemyError, action: str) -> Exception:
        self.logger.error(
            "Repository error during %s on %s: %s", action, self.model.__name__, exc
        )
        return translate_db_error(exc, f"{action} {self.model.__name__}")

    def get_by_id(self, id: str, for_update: bool = False) -> Optional[T]:
        try:
            return self._query(for_update).filter(self.model.id == id).first()
        except SQLAlchemyError as exc:
            raise self._fail(exc, "retrieve") from exc

    def add(self, entity: T) -> T:
        try:
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise self._fail(exc, "create") from exc

    def add_many(self, entities: Sequence[T]) -> List[T]:
        try:
            self.db.add_all(list(entities))
            self.db.flush()
            return list(entities)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise self._fail(exc, "bulk create") from exc

    def update(self, entity: T) -> T:
        try:
            self.db.flush()
            return entity
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise self._fail(exc, "update") from exc

    def exists(self, **kwargs: Any) -> bool:
        try:
            return self.db.query(self.model).filter_by(**kwargs).first() is not None
        except SQLAlchemyError as exc:
            raise self._fail(exc, "check existence of") from exc
