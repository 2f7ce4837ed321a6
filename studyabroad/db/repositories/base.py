"""
Data-access wrapper applied to repository functions.
"""

import functools
import time
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from studyabroad.exceptions import DatabaseError
from studyabroad.observability.logging import get_logger
from studyabroad.observability.metrics import metrics

logger = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def data_access(operation: str) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Wrap a repository coroutine with timing, logging and error translation.

    IntegrityError passes through unchanged so services can resolve
    constraint races (duplicate signup, concurrent login). Any other
    SQLAlchemyError becomes DatabaseError.

    Usage:
        @data_access("find_user_by_email")
        async def find_by_email(session: AsyncSession, email: str) -> User | None:
            ...
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except IntegrityError:
                duration = time.perf_counter() - start
                metrics.record_db_query(operation, False, duration)
                logger.info("db_constraint_violation", operation=operation)
                raise
            except SQLAlchemyError as exc:
                duration = time.perf_counter() - start
                metrics.record_db_query(operation, False, duration)
                metrics.record_error(type(exc).__name__, operation)
                logger.error(
                    "db_operation_failed",
                    operation=operation,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    duration_seconds=duration,
                )
                raise DatabaseError(operation, str(exc)) from exc

            duration = time.perf_counter() - start
            metrics.record_db_query(operation, True, duration)
            logger.debug("db_operation", operation=operation, duration_seconds=duration)
            return result

        return wrapper

    return decorator
