"""Tests for retry policies."""

from __future__ import annotations

import pytest

from narratum.validation import (
    ConditionalRetryPolicy,
    ExponentialBackoffRetryPolicy,
    FixedRetryPolicy,
    NoRetryPolicy,
    RetryContext,
    RetryPolicy,
)

FAILED = RetryContext(error_messages=("narrator content too short",))
CLEAN = RetryContext()


class TestFixedRetryPolicy:
    def test_retries_up_to_max(self) -> None:
        policy = FixedRetryPolicy(max_retries=2)

        assert policy.should_retry(1, FAILED)
        assert policy.should_retry(2, FAILED)
        assert not policy.should_retry(3, FAILED)

    def test_never_retries_without_errors(self) -> None:
        assert not FixedRetryPolicy().should_retry(1, CLEAN)

    def test_constant_delay(self) -> None:
        policy = FixedRetryPolicy(delay=0.5)

        assert policy.delay(1) == 0.5
        assert policy.delay(5) == 0.5

    def test_hook_called_with_attempt_and_context(self) -> None:
        calls: list[tuple[int, RetryContext]] = []
        policy = FixedRetryPolicy(on_retry=lambda attempt, ctx: calls.append((attempt, ctx)))

        policy.on_retry(1, FAILED)

        assert calls == [(1, FAILED)]

    def test_hook_is_optional(self) -> None:
        FixedRetryPolicy().on_retry(1, FAILED)

    @pytest.mark.parametrize(("kwargs", "match"), [({"max_retries": -1}, "max_retries"), ({"delay": -1}, "delay")])
    def test_invalid_arguments(self, kwargs: dict[str, float], match: str) -> None:
        with pytest.raises(ValueError, match=match):
            FixedRetryPolicy(**kwargs)


class TestExponentialBackoffRetryPolicy:
    def test_delay_grows_and_caps(self) -> None:
        policy = ExponentialBackoffRetryPolicy(initial_delay=1.0, multiplier=2.0, max_delay=5.0)

        assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_huge_attempt_number_is_capped(self) -> None:
        policy = ExponentialBackoffRetryPolicy(initial_delay=1.0, multiplier=10.0, max_delay=3.0)

        assert policy.delay(10_000) == 3.0

    def test_should_retry(self) -> None:
        policy = ExponentialBackoffRetryPolicy(max_retries=1)

        assert policy.should_retry(1, FAILED)
        assert not policy.should_retry(2, FAILED)

    def test_multiplier_below_one_rejected(self) -> None:
        with pytest.raises(ValueError, match="multiplier"):
            ExponentialBackoffRetryPolicy(multiplier=0.5)


class TestConditionalRetryPolicy:
    def test_condition_gates_retry(self) -> None:
        policy = ConditionalRetryPolicy(lambda ctx: len(ctx.error_messages) < 2)

        assert policy.should_retry(1, FAILED)
        assert not policy.should_retry(1, RetryContext(error_messages=("a", "b")))

    def test_for_errors_matches_case_insensitively(self) -> None:
        policy = ConditionalRetryPolicy.for_errors(["TIMEOUT", "unavailable"])

        assert policy.should_retry(1, RetryContext(error_messages=("narrator generation failed: timeout",)))
        assert not policy.should_retry(1, FAILED)

    def test_for_errors_checks_latest_attempt_only(self) -> None:
        policy = ConditionalRetryPolicy.for_errors(["timeout"])
        context = RetryContext(
            error_messages=("narrator generation failed: timeout", "narrator content too short"),
            last_errors=("narrator content too short",),
        )

        assert not policy.should_retry(2, context)

    def test_for_errors_retries_latest_transient_error(self) -> None:
        policy = ConditionalRetryPolicy.for_errors(["timeout"])
        context = RetryContext(
            error_messages=("narrator content too short", "narrator generation failed: timeout"),
            last_errors=("narrator generation failed: timeout",),
        )

        assert policy.should_retry(2, context)

    def test_respects_max_retries(self) -> None:
        policy = ConditionalRetryPolicy(lambda ctx: True, max_retries=1)

        assert not policy.should_retry(2, FAILED)


class TestNoRetryPolicy:
    def test_never_retries(self) -> None:
        policy = NoRetryPolicy()

        assert policy.max_retries == 0
        assert not policy.should_retry(1, FAILED)
        assert policy.delay(1) == 0.0
        assert policy.on_retry(1, FAILED) is None


@pytest.mark.parametrize(
    "policy",
    [
        FixedRetryPolicy(),
        ExponentialBackoffRetryPolicy(),
        ConditionalRetryPolicy(lambda ctx: True),
        NoRetryPolicy(),
    ],
)
def test_policies_satisfy_protocol(policy: object) -> None:
    assert isinstance(policy, RetryPolicy)


def test_retry_context_has_errors() -> None:
    assert FAILED.has_errors
    assert not CLEAN.has_errors
