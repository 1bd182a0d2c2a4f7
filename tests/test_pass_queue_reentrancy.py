from __future__ import annotations

from typing import List

import pytest

from flownote.sync.queue import PassQueue


def test_idle_queue_runs_immediately_and_returns_result() -> None:
    q = PassQueue()
    assert q.run(lambda: 42) == 42
    assert q.running is False


def test_reentrant_submissions_run_after_the_current_pass_in_order() -> None:
    q = PassQueue()
    calls: List[str] = []

    def outer() -> str:
        calls.append("outer:start")
        assert q.run(lambda: calls.append("first")) is None
        assert q.run(lambda: calls.append("second")) is None
        calls.append("outer:end")
        return "done"

    assert q.run(outer) == "done"
    assert calls == ["outer:start", "outer:end", "first", "second"]
    assert len(q) == 0


def test_pending_passes_with_same_key_are_coalesced() -> None:
    q = PassQueue()
    calls: List[str] = []

    def outer() -> None:
        for _ in range(3):
            q.run(lambda: calls.append("refresh"), key="refresh")
        q.run(lambda: calls.append("other"))

    q.run(outer)
    assert calls == ["refresh", "other"]


def test_errors_in_queued_passes_are_contained() -> None:
    q = PassQueue()
    calls: List[str] = []

    def boom() -> None:
        raise ValueError("queued failure")

    def outer() -> None:
        q.run(boom)
        q.run(lambda: calls.append("after"))

    q.run(outer)
    assert calls == ["after"]

    with pytest.raises(ValueError):
        q.run(boom)
    assert q.running is False
