"""Guard for audit, metrics and event-log calls made by the pipeline."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from narratum.observability.logging import get_logger
from narratum.observability.metrics import MetricsUsageError

log = get_logger(__name__)

T = TypeVar("T")


def instrument(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
    """Call an instrumentation function, logging and swallowing its failures.

    Usage errors (``MetricsUsageError``) still propagate, since they point
    at a defect in the caller rather than a runtime condition.

    Returns:
        The function's result, or None if it raised.
    """
    try:
        return fn(*args, **kwargs)
    except MetricsUsageError:
        raise
    except Exception as e:
        log.warning(
            "instrumentation_failed",
            target=getattr(fn, "__qualname__", repr(fn)),
            error=str(e),
            error_type=type(e).__name__,
        )
        return None
