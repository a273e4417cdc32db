# backend/mathbridge/services/base.py
"""
Base Service Pattern for the MathBridge scheduling core.

Provides common functionality for all service classes including:
- Transaction management with error translation
- Logging
- Performance monitoring
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ConflictException,
    DomainException,
    RepositoryException,
    ServiceException,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.base_repository import translate_db_error

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Constraint/index name fragments mapped onto the business rule they enforce
_INTEGRITY_CONFLICTS = (
    ("sessions_no_overlap_per_tutor", "TUTOR_UNAVAILABLE", "Tutor is already booked then"),
    ("sessions_no_overlap_per_child", "CHILD_UNAVAILABLE", "Child is already booked then"),
    ("reschedule_requests", "RESCHEDULE_PENDING", "A pending reschedule request already exists"),
)


def resolve_integrity_conflict(exc: IntegrityError) -> ConflictException:
    message = str(getattr(exc, "orig", exc)).lower()
    for fragment, code, text in _INTEGRITY_CONFLICTS:
        if fragment in message:
            return ConflictException(text, code=code)
    return ConflictException("The change conflicts with existing data", code="INTEGRITY_CONFLICT")


class BaseService:
    """
    Base class for all service layer components.

    Provides common patterns for:
    - Database session management
    - Logging
    - Transaction handling
    - Performance monitoring
    """

    # Class-level metrics storage
    _class_metrics: Dict[str, Dict[str, Dict[str, float]]] = {}

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Context manager for one unit of work.

        Commits on success. On any failure the session is rolled back so a
        rejected operation leaves no partial writes, and store errors are
        translated into domain exceptions.
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except IntegrityError as exc:
            self.db.rollback()
            self.logger.warning("Transaction rejected by constraint: %s", exc.orig)
            raise resolve_integrity_conflict(exc) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Transaction failed: %s", exc)
            translated = translate_db_error(exc, "commit")
            if isinstance(translated, DomainException):
                raise translated from exc
            raise ServiceException(f"Database operation failed: {exc}") from exc
        except RepositoryException as exc:
            self.db.rollback()
            self.logger.error("Repository failure in transaction: %s", exc)
            raise ServiceException(str(exc)) from exc
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("create_contract")
            def create_contract(self, data):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                start_time = time.time()
                success = False
                error_type: Optional[str] = None
                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.time() - start_time
                    self._record_metric(operation_name, elapsed, success)
                    if elapsed > settings.slow_operation_threshold_s:
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                        error_type=error_type,
                    )

            wrapper._operation_name = operation_name  # type: ignore[attr-defined]
            wrapper._is_measured = True  # type: ignore[attr-defined]
            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """Log an operation with structured context."""
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        class_name = self.__class__.__name__
        metrics = BaseService._class_metrics.setdefault(class_name, {})
        metric_data = metrics.setdefault(
            operation,
            {
                "count": 0,
                "total_time": 0.0,
                "success_count": 0,
                "failure_count": 0,
                "min_time": float("inf"),
                "max_time": 0.0,
            },
        )
        metric_data["count"] += 1
        metric_data["total_time"] += elapsed
        metric_data["min_time"] = min(metric_data["min_time"], elapsed)
        metric_data["max_time"] = max(metric_data["max_time"], elapsed)
        if success:
            metric_data["success_count"] += 1
        else:
            metric_data["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get performance metrics for this service.

        Returns:
            Dictionary with metrics for each measured operation
        """
        result: Dict[str, Any] = {}
        for operation, data in BaseService._class_metrics.get(self.__class__.__name__, {}).items():
            count = data["count"]
            if count == 0:
                continue
            result[operation] = {
                "count": count,
                "avg_time": data["total_time"] / count,
                "min_time": data["min_time"],
                "max_time": data["max_time"],
                "success_rate": data["success_count"] / count,
                "success_count": data["success_count"],
                "failure_count": data["failure_count"],
            }
        return result
