"""Run identity propagation.

Every pipeline run gets a run id that is stored in a ``ContextVar`` and bound
into structlog's context variables, so log lines emitted anywhere inside the
run (including concurrently dispatched role calls) carry the same id.

Usage:
    from narratum.observability.tracing import generate_run_id, run_context

    run_id = generate_run_id()
    with run_context(run_id):
        log.info("stage_started", stage="generation")  # includes run_id
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator

_current_run_id: ContextVar[str | None] = ContextVar("narratum_run_id", default=None)


def generate_run_id() -> str:
    """Generate a unique id for one pipeline run."""
    return uuid.uuid4().hex


def get_current_run_id() -> str | None:
    """Return the run id of the run executing in this context, if any."""
    return _current_run_id.get()


def set_current_run_id(run_id: str | None) -> None:
    """Set the run id for the current context.

    Prefer :func:`run_context`, which also restores the previous value.
    """
    _current_run_id.set(run_id)


@contextmanager
def run_context(run_id: str) -> Iterator[str]:
    """Bind ``run_id`` to the current context for the duration of the block.

    Args:
        run_id: Identifier of the run being executed.

    Yields:
        The bound run id.
    """
    token = _current_run_id.set(run_id)
    try:
        with structlog.contextvars.bound_contextvars(run_id=run_id):
            yield run_id
    finally:
        _current_run_id.reset(token)
