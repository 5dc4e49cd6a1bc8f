from __future__ import annotations

import threading

import pytest

from seed_toolkit.errors import EXIT_TEMPFAIL, ConcurrencyLimitError
from seed_toolkit.pipeline.executor import CommandExecutor


def test_runs_command_and_returns_value() -> None:
    executor = CommandExecutor(2)

    assert executor.execute("add", lambda a, b: a + b, 2, b=3) == 5
    assert executor.in_flight == 0


def test_rejects_when_limit_reached_without_cancelling_running_command() -> None:
    executor = CommandExecutor(1)
    started = threading.Event()
    release = threading.Event()
    results = []

    def slow() -> str:
        started.set()
        release.wait(timeout=5)
        return "done"

    worker = threading.Thread(target=lambda: results.append(executor.execute("slow", slow)))
    worker.start()
    assert started.wait(timeout=5)

    with pytest.raises(ConcurrencyLimitError) as exc:
        executor.execute("second", lambda: "never")

    assert exc.value.is_recoverable
    assert exc.value.exit_code == EXIT_TEMPFAIL
    assert "(1)" in exc.value.message
    assert executor.in_flight == 1

    release.set()
    worker.join(timeout=5)
    assert results == ["done"]
    assert executor.execute("third", lambda: "ok") == "ok"


def test_slot_is_released_when_command_raises() -> None:
    executor = CommandExecutor(1)

    def boom() -> None:
        raise ValueError("boom")

    with pytest.raises(ValueError):
        executor.execute("boom", boom)

    assert executor.execute("after", lambda: 1) == 1


@pytest.mark.parametrize("value", [None, 0, -2])
def test_invalid_limit_falls_back_to_default(value) -> None:
    assert CommandExecutor(value).max_concurrent == 5
