"""Database operation decorators for consistent error handling."""

from collections.abc import Awaitable, Callable
from functools import wraps
import inspect
from typing import Any, ParamSpec, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import DatabaseOperationError

P = ParamSpec("P")
T = TypeVar("T")


def _extract_value_from_path(bound_args: inspect.BoundArguments, path: str) -> Any:
    """Follow a dotted path (e.g. ``job.feed_id``) through the bound arguments."""
    base_param_name, *attr_path = path.split(".")
    current_value = bound_args.arguments.get(base_param_name)
    for attr in attr_path:
        if current_value is None:
            break
        current_value = getattr(current_value, attr, None)
    return current_value


def _base_db_error_handler(
    operation: str,
    id_paths: dict[str, str] | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Wrap a coroutine so SQLAlchemy errors surface as DatabaseOperationError.

    Args:
        operation: Description of the operation for error messages.
        id_paths: Maps the keyword of the raised error (e.g. ``"feed_id"``)
            to the argument path it is read from (e.g. ``"feed.id"``).

    Returns:
        A decorator.

    Raises:
        TypeError: At decoration time, if a path names a missing parameter.
    """
    id_paths = id_paths or {}

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        sig = inspect.signature(func)
        for path in id_paths.values():
            base_param_name = path.split(".")[0]
            if base_param_name not in sig.parameters:
                raise TypeError(
                    f"Decorator on '{func.__name__}' specifies path '{path}', "
                    f"but the function has no parameter named '{base_param_name}'."
                )

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except SQLAlchemyError as e:
                bound_args = sig.bind(*args, **kwargs)
                bound_args.apply_defaults()
                extracted_ids = {
                    id_name: (
                        None
                        if (value := _extract_value_from_path(bound_args, path))
                        is None
                        else str(value)
                    )
                    for id_name, path in id_paths.items()
                }
                raise DatabaseOperationError(
                    f"Failed to {operation}", **extracted_ids
                ) from e

        return wrapper

    return decorator


def handle_db_errors(
    operation: str,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for generic database operations without specific context."""
    return _base_db_error_handler(operation=operation)


def handle_feed_db_errors(
    operation: str,
    feed_id_from: str = "feed_id",
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for database operations involving a feed."""
    return _base_db_error_handler(
        operation=operation, id_paths={"feed_id": feed_id_from}
    )


def handle_job_db_errors(
    operation: str,
    job_id_from: str = "job.id",
    feed_id_from: str = "job.feed_id",
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for database operations involving a refresh job."""
    return _base_db_error_handler(
        operation=operation,
        id_paths={"job_id": job_id_from, "feed_id": feed_id_from},
    )
