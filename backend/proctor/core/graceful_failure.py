"""
Graceful failure utilities.

Reusable context manager and decorator for non-critical operations that
must not block the main execution flow: attempt the operation, log any
exception with context, continue.

Used for last-activity timestamp bumps, persisting lazily-derived no-show
assignments, and per-session work inside bulk live-monitor queries.

Usage:
    from proctor.core.graceful_failure import graceful_failure

    with graceful_failure("record attempt activity", logger):
        await touch_activity(db, attempt, now)

    # With context and a stack trace:
    with graceful_failure(
        "aggregate live stats",
        logger,
        exc_info=True,
        context={"session_id": session.id},
    ):
        ...
"""

import logging
from contextlib import contextmanager
from functools import wraps
from typing import Any, Awaitable, Callable, Generator, Optional, TypeVar


T = TypeVar("T")


@contextmanager
def graceful_failure(
    operation_name: str,
    logger: logging.Logger,
    *,
    log_level: int = logging.WARNING,
    exc_info: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> Generator[None, None, None]:
    """Context manager for non-critical operations that should not block execution.

    Unlike the application exception handlers, this does NOT raise, roll
    back the database session, or stop execution.

    Args:
        operation_name: Human-readable name of the operation for logging
            (e.g., "record attempt activity").
        logger: The logger instance to use for logging errors.
        log_level: Logging level for error messages. Defaults to WARNING.
        exc_info: Whether to include exception traceback in log.
        context: Optional dictionary of additional context to include in the
            log message (e.g., {"session_id": 12}).
    """
    try:
        yield
    except Exception as e:
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"Failed to {operation_name} ({context_str}): {e}"
        else:
            message = f"Failed to {operation_name}: {e}"

        logger.log(log_level, message, exc_info=exc_info)


class GracefulFailureDecorator:
    """Decorator wrapping a whole coroutine function in graceful failure handling.

    Returns ``default`` when the wrapped coroutine raises.

    Usage:
        @graceful_failure_decorator("persist no-show assignments")
        async def persist_no_shows(db, participants) -> int:
            ...
    """

    def __init__(
        self,
        operation_name: str,
        *,
        logger: Optional[logging.Logger] = None,
        log_level: int = logging.WARNING,
        exc_info: bool = False,
        default: Any = None,
    ):
        self.operation_name = operation_name
        self._logger = logger
        self.log_level = log_level
        self.exc_info = exc_info
        self.default = default

    def __call__(
        self, func: Callable[..., Awaitable[T]]
    ) -> Callable[..., Awaitable[Optional[T]]]:
        """Decorate the coroutine function with graceful failure handling."""

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Optional[T]:
            logger = self._logger or logging.getLogger(func.__module__)

            with graceful_failure(
                self.operation_name,
                logger,
                log_level=self.log_level,
                exc_info=self.exc_info,
            ):
                return await func(*args, **kwargs)

            return self.default

        return wrapper


graceful_failure_decorator = GracefulFailureDecorator
