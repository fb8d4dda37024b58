"""Tests for the write executor helpers."""

import logging
from concurrent.futures import Future

import pytest

from lcrules import workers


class TestResolveWriteWorkerCount:
    """Tests for LCRULES_WRITE_WORKERS handling."""

    def test_default(self, monkeypatch):
        monkeypatch.delenv("LCRULES_WRITE_WORKERS", raising=False)
        assert workers._resolve_write_worker_count() == 1

    @pytest.mark.parametrize("value, expected", [("4", 4), ("0", 1), ("500", 16)])
    def test_override_is_clamped(self, monkeypatch, value, expected):
        monkeypatch.setenv("LCRULES_WRITE_WORKERS", value)
        assert workers._resolve_write_worker_count() == expected

    def test_invalid_override(self, monkeypatch, caplog):
        monkeypatch.setenv("LCRULES_WRITE_WORKERS", "many")
        assert workers._resolve_write_worker_count() == 1
        assert "not an integer" in caplog.text


class TestLogFailure:
    """Tests for the mutation done-callback."""

    def test_logs_exception(self, caplog):
        future = Future()
        future.set_exception(OSError("disk full"))
        workers.log_failure("Insert")(future)
        assert "Insert failed: disk full" in caplog.text

    def test_success_is_quiet(self, caplog):
        future = Future()
        future.set_result([])
        with caplog.at_level(logging.DEBUG, logger="lcrules.workers"):
            workers.log_failure("Insert")(future)
        assert caplog.text == ""


def test_write_executor_runs_in_order():
    """The default executor applies submissions in FIFO order."""
    seen = []
    futures = [workers.WRITE_EXECUTOR.submit(seen.append, n) for n in range(20)]
    for future in futures:
        future.result(timeout=5)
    assert seen == list(range(20))
