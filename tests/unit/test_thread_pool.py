"""
Unit tests for the worker pool.
"""

import threading
import time

import pytest

from msgserver.core import ThreadPool


@pytest.fixture
def pool():
    pool = ThreadPool(workers=3, idle_timeout=0.1)
    pool.start()
    yield pool
    pool.shutdown(wait=False)


class TestThreadPool:
    """Tests for ThreadPool."""

    def test_starts_fixed_worker_count(self, pool: ThreadPool):
        assert pool.worker_count == 3
        assert len(pool.threads) == 3
        assert all(thread.is_alive() for thread in pool.threads)

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            ThreadPool(workers=0)

    def test_submit_before_start(self):
        with pytest.raises(RuntimeError):
            ThreadPool(workers=1).submit(lambda: None)

    def test_runs_submitted_tasks(self, pool: ThreadPool):
        results = []
        lock = threading.Lock()

        def work(n):
            with lock:
                results.append(n)

        for n in range(20):
            pool.submit(work, args=(n,))

        assert pool.wait_for_drain(timeout=5.0)
        assert sorted(results) == list(range(20))

    def test_submit_never_blocks(self):
        pool = ThreadPool(workers=1, idle_timeout=0.1)
        pool.start()
        release = threading.Event()
        try:
            start = time.monotonic()
            for _ in range(100):
                pool.submit(release.wait, args=(5.0,))
            assert time.monotonic() - start < 1.0
            assert pool.pending == 100
        finally:
            release.set()
            pool.shutdown(wait=True, timeout=5.0)

    def test_tasks_run_concurrently(self, pool: ThreadPool):
        barrier = threading.Barrier(3, timeout=2.0)
        passed = []

        def work():
            barrier.wait()
            passed.append(True)

        for _ in range(3):
            pool.submit(work)

        assert pool.wait_for_drain(timeout=5.0)
        assert len(passed) == 3

    def test_failing_task_does_not_kill_worker(self):
        pool = ThreadPool(workers=1, idle_timeout=0.1)
        pool.start()
        done = threading.Event()

        def boom():
            raise RuntimeError("boom")

        try:
            pool.submit(boom)
            pool.submit(done.set)

            assert done.wait(timeout=2.0)
            assert pool.wait_for_drain(timeout=2.0)
            assert pool.threads[0].is_alive()
            assert pool.stats["tasks"]["failed"] == 1
            assert pool.stats["tasks"]["completed"] == 1
        finally:
            pool.shutdown()

    def test_wait_for_drain_times_out(self, pool: ThreadPool):
        release = threading.Event()
        pool.submit(release.wait, args=(5.0,))
        try:
            assert pool.wait_for_drain(timeout=0.1) is False
        finally:
            release.set()
        assert pool.wait_for_drain(timeout=2.0) is True

    def test_shutdown_is_idempotent(self):
        pool = ThreadPool(workers=2, idle_timeout=0.1)
        pool.start()
        pool.shutdown()
        pool.shutdown()

        with pytest.raises(RuntimeError):
            pool.submit(lambda: None)

        for thread in pool.threads:
            thread.join(timeout=2.0)
            assert not thread.is_alive()

    def test_shutdown_cancels_queued_tasks(self):
        pool = ThreadPool(workers=1, idle_timeout=0.1)
        pool.start()
        started = threading.Event()
        release = threading.Event()
        ran = []
        cancelled = []

        def hold():
            started.set()
            release.wait(5.0)

        try:
            pool.submit(hold)
            assert started.wait(timeout=2.0)
            for n in range(3):
                pool.submit(ran.append, args=(n,))

            pool.shutdown(wait=False, cancel=lambda task: cancelled.append(task.args[0]))

            assert sorted(cancelled) == [0, 1, 2]
        finally:
            release.set()

        assert pool.wait_for_drain(timeout=2.0)
        assert pool.pending == 0
        assert ran == []

    def test_failing_cancel_still_counts_task_finished(self):
        pool = ThreadPool(workers=1, idle_timeout=0.1)
        pool.start()
        started = threading.Event()
        release = threading.Event()

        def hold():
            started.set()
            release.wait(5.0)

        def bad_cancel(task):
            raise RuntimeError("cancel failed")

        try:
            pool.submit(hold)
            assert started.wait(timeout=2.0)
            pool.submit(lambda: None)
            pool.shutdown(wait=False, cancel=bad_cancel)
        finally:
            release.set()

        assert pool.wait_for_drain(timeout=2.0)
