"""Tests for run id propagation."""

from __future__ import annotations

import asyncio

import pytest
import structlog

from narratum.observability import (
    generate_run_id,
    get_current_run_id,
    run_context,
    set_current_run_id,
)


class TestRunIds:
    def test_generate_run_id_is_unique(self) -> None:
        ids = {generate_run_id() for _ in range(100)}

        assert len(ids) == 100

    def test_generate_run_id_is_hex(self) -> None:
        run_id = generate_run_id()

        assert len(run_id) == 32
        int(run_id, 16)

    def test_no_run_id_outside_a_run(self) -> None:
        assert get_current_run_id() is None

    def test_set_current_run_id(self) -> None:
        set_current_run_id("abc")
        try:
            assert get_current_run_id() == "abc"
        finally:
            set_current_run_id(None)


class TestRunContext:
    def test_binds_and_restores(self) -> None:
        with run_context("run-1") as bound:
            assert bound == "run-1"
            assert get_current_run_id() == "run-1"
        assert get_current_run_id() is None

    def test_nested_contexts_restore_outer(self) -> None:
        with run_context("outer"):
            with run_context("inner"):
                assert get_current_run_id() == "inner"
            assert get_current_run_id() == "outer"

    def test_binds_structlog_contextvars(self) -> None:
        with run_context("run-2"):
            assert structlog.contextvars.get_contextvars()["run_id"] == "run-2"
        assert "run_id" not in structlog.contextvars.get_contextvars()

    def test_restores_after_exception(self) -> None:
        with pytest.raises(RuntimeError), run_context("run-3"):
            raise RuntimeError("boom")
        assert get_current_run_id() is None

    @pytest.mark.asyncio
    async def test_concurrent_tasks_see_their_own_run_id(self) -> None:
        async def worker(run_id: str) -> str | None:
            with run_context(run_id):
                await asyncio.sleep(0)
                return get_current_run_id()

        results = await asyncio.gather(worker("a"), worker("b"), worker("c"))

        assert results == ["a", "b", "c"]
