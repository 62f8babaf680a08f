"""Retry policies for the generate-then-validate loop.

A policy answers three questions about a failed attempt: should the
pipeline try again, how long should it wait first, and is there anything to
notify before it does. Policies hold only their fixed configuration; every
answer is computed from the attempt number and the :class:`RetryContext`.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class RetryContext:
    """What the pipeline knows when deciding on a retry.

    Attributes:
        error_messages: Errors accumulated over every attempt so far.
        warning_messages: Warnings accumulated over every attempt so far.
        elapsed_seconds: Time since the run started.
        last_errors: Errors of the most recent attempt only.
        metadata: Free-form extra information.
    """

    error_messages: tuple[str, ...] = ()
    warning_messages: tuple[str, ...] = ()
    elapsed_seconds: float = 0.0
    last_errors: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return bool(self.error_messages)


RetryHook = Callable[[int, RetryContext], None]


@runtime_checkable
class RetryPolicy(Protocol):
    """Contract of every retry policy.

    ``attempt`` is the 1-based number of the attempt that just failed.
    """

    max_retries: int

    def should_retry(self, attempt: int, context: RetryContext) -> bool: ...

    def delay(self, attempt: int) -> float:
        """Seconds to wait before the next attempt."""
        ...

    def on_retry(self, attempt: int, context: RetryContext) -> None:
        """Notification hook called just before a retry; no control flow."""
        ...


def _check_max_retries(value: int) -> None:
    if value < 0:
        raise ValueError(f"max_retries must be >= 0, got {value}")


class _HookMixin:
    _hook: RetryHook | None = None

    def on_retry(self, attempt: int, context: RetryContext) -> None:
        if self._hook is not None:
            self._hook(attempt, context)


class FixedRetryPolicy(_HookMixin):
    """Retry up to ``max_retries`` times whenever any error exists."""

    def __init__(
        self, max_retries: int = 3, delay: float = 0.1, on_retry: RetryHook | None = None
    ) -> None:
        _check_max_retries(max_retries)
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        self.max_retries = max_retries
        self._delay = delay
        self._hook = on_retry

    def should_retry(self, attempt: int, context: RetryContext) -> bool:
        return attempt <= self.max_retries and context.has_errors

    def delay(self, attempt: int) -> float:  # noqa: ARG002 - constant delay
        return self._delay


class ExponentialBackoffRetryPolicy(_HookMixin):
    """Retry with a delay that grows by ``multiplier`` up to ``max_delay``."""

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 0.1,
        multiplier: float = 2.0,
        max_delay: float = 10.0,
        on_retry: RetryHook | None = None,
    ) -> None:
        _check_max_retries(max_retries)
        if initial_delay < 0 or max_delay < 0:
            raise ValueError("delays must be >= 0")
        if multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got {multiplier}")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self._hook = on_retry

    def should_retry(self, attempt: int, context: RetryContext) -> bool:
        return attempt <= self.max_retries and context.has_errors

    def delay(self, attempt: int) -> float:
        exponent = max(0, attempt - 1)
        try:
            raw = self.initial_delay * self.multiplier**exponent
        except OverflowError:
            return self.max_delay
        return min(raw, self.max_delay)


class ConditionalRetryPolicy(_HookMixin):
    """Retry only while ``condition`` accepts the context.

    Use :meth:`for_errors` to retry only errors that look transient.
    """

    def __init__(
        self,
        condition: Callable[[RetryContext], bool],
        max_retries: int = 3,
        delay: float = 0.1,
        on_retry: RetryHook | None = None,
    ) -> None:
        _check_max_retries(max_retries)
        self.condition = condition
        self.max_retries = max_retries
        self._delay = delay
        self._hook = on_retry

    @classmethod
    def for_errors(
        cls,
        patterns: tuple[str, ...] | list[str],
        max_retries: int = 3,
        delay: float = 0.1,
        on_retry: RetryHook | None = None,
    ) -> ConditionalRetryPolicy:
        """Retry when an error of the latest attempt contains one of ``patterns``.

        Matching is case-insensitive. Earlier attempts are ignored, so a
        permanent error fails fast even after a transient one. A context
        without ``last_errors`` falls back to ``error_messages``.
        """
        folded = tuple(p.casefold() for p in patterns)

        def matches(context: RetryContext) -> bool:
            latest = context.last_errors or context.error_messages
            return any(p in message.casefold() for message in latest for p in folded)

        return cls(matches, max_retries=max_retries, delay=delay, on_retry=on_retry)

    def should_retry(self, attempt: int, context: RetryContext) -> bool:
        return attempt <= self.max_retries and context.has_errors and self.condition(context)

    def delay(self, attempt: int) -> float:  # noqa: ARG002 - constant delay
        return self._delay


class NoRetryPolicy:
    """Never retries."""

    max_retries = 0

    def should_retry(self, attempt: int, context: RetryContext) -> bool:  # noqa: ARG002
        return False

    def delay(self, attempt: int) -> float:  # noqa: ARG002
        return 0.0

    def on_retry(self, attempt: int, context: RetryContext) -> None:  # noqa: ARG002
        return None
