import threading

import pytest

from imcview.core import TaskRunner, render


def test_submit_and_wait():
    with TaskRunner() as runner:
        handle = runner.submit("sum", sum, [1, 2, 3])
        assert runner.wait(handle, timeout=5) == 6
        assert runner.poll(handle) == 6
        assert runner.is_current(handle)


def test_newer_submission_supersedes_older():
    release = threading.Event()

    def slow(value):
        release.wait(5)
        return value

    with TaskRunner(max_workers=2) as runner:
        stale = runner.submit("render", slow, "old")
        assert runner.poll(stale) is None  # still running
        fresh = runner.submit("render", lambda: "new")
        assert runner.wait(fresh, timeout=5) == "new"
        release.set()
        assert not runner.is_current(stale)
        assert runner.wait(stale, timeout=5) is None
        assert runner.poll(stale) is None


def test_keys_are_independent():
    with TaskRunner() as runner:
        a = runner.submit("render", lambda: "a")
        b = runner.submit("train", lambda: "b")
        assert runner.wait(a, timeout=5) == "a"
        assert runner.wait(b, timeout=5) == "b"


def test_task_exception_is_reraised():
    def fail():
        raise ValueError("boom")

    with TaskRunner() as runner:
        handle = runner.submit("train", fail)
        with pytest.raises(ValueError, match="boom"):
            runner.wait(handle, timeout=5)


def test_render_in_background(small_store, red_settings):
    with TaskRunner() as runner:
        handle = runner.submit("render", render, small_store, red_settings)
        image = runner.wait(handle, timeout=5)
    assert image.tobytes() == render(small_store, red_settings).tobytes()
