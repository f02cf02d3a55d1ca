# backend/tutoring_core/services/base.py
"""
Base Service Pattern for the tutoring booking core.

Provides common functionality for all service classes including:
- Transaction management and storage error translation
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

from ..core.clock import Clock, utc_now
from ..core.exceptions import (
    ConflictException,
    DomainException,
    IntegrityConflictError,
    RepositoryException,
    ServiceException,
    ValidationException,
)
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class BaseService:
    """
    Base class for all service layer components.

    Provides common patterns for:
    - Database session management
    - Logging
    - Transaction handling
    - Performance monitoring
    - An injectable clock
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        """
        Initialize base service.

        Args:
            db: Database session
            clock: Time source, defaults to the UTC wall clock
        """
        self.db = db
        self.clock: Clock = clock or utc_now
        self.logger = logging.getLogger(self.__class__.__name__)
        self._metrics: Dict[str, Dict[str, float]] = {}

    @contextmanager
    def transaction(self, db_error_message: Optional[str] = None) -> Iterator[Session]:
        """
        Context manager for database transactions.

        Usage:
            with self.transaction():
                # Do multiple operations
                self.db.add(entity)
                # Note: commit is handled automatically

        Domain exceptions roll back and propagate unchanged. Constraint
        violations become ConflictException. Other storage faults become
        ValidationException(db_error_message) when a message is given,
        otherwise ServiceException.
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except DomainException:
            self.db.rollback()
            raise
        except (IntegrityError, IntegrityConflictError) as e:
            self.logger.warning("Transaction hit a constraint: %s", e)
            self.db.rollback()
            raise ConflictException("The request conflicts with existing data") from e
        except (SQLAlchemyError, RepositoryException) as e:
            self.logger.error("Transaction failed: %s", e)
            self.db.rollback()
            if db_error_message:
                raise ValidationException(db_error_message) from e
            raise ServiceException(f"Database operation failed: {e}") from e
        except Exception as e:
            self.logger.error("Unexpected error in transaction: %s", e)
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("join_waitlist")
            def join_waitlist(self, session_id, student_id):
                ...

        Args:
            operation_name: Name of the operation for metrics
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self, *args, **kwargs):
                start_time = time.time()
                success = False
                error_type = None

                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.time() - start_time

                    if hasattr(self, "_record_metric"):
                        self._record_metric(operation_name, elapsed, success)

                    if elapsed > 1.0 and hasattr(self, "logger"):
                        self.logger.warning(
                            "Slow operation detected: %s took %.2fs", operation_name, elapsed
                        )

                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="success" if success else "error",
                        error_type=error_type,
                    )

            wrapper._operation_name = operation_name  # type: ignore[attr-defined]
            return cast(F, wrapper)

        return decorator

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        """Record metric for an operation."""
        stats = self._metrics.setdefault(
            operation, {"count": 0, "total_time": 0.0, "success_count": 0, "failure_count": 0}
        )
        stats["count"] += 1
        stats["total_time"] += elapsed
        if success:
            stats["success_count"] += 1
        else:
            stats["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """Per-operation counters for this service instance."""
        result = {}
        for operation, stats in self._metrics.items():
            count = stats["count"]
            result[operation] = {
                **stats,
                "avg_time": stats["total_time"] / count if count else 0.0,
                "success_rate": stats["success_count"] / count if count else 0.0,
            }
        return result
