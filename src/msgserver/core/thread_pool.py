"""
=============================================================================
THREAD POOL IMPLEMENTATION
=============================================================================

A fixed set of worker threads pulling units of work from a shared queue.

=============================================================================
WHY USE A THREAD POOL?
=============================================================================

Without a pool, the server would start a thread per connection:

    for conn in accept_connections():
        Thread(target=handle, args=(conn,)).start()

    1. No limit on concurrent threads → resource exhaustion
    2. Thread creation cost paid on every connection

With a pool:

    pool = ThreadPool(workers=16)
    pool.start()

    for conn in accept_connections():
        pool.submit(handle, args=(conn,))

    1. Workers are created once, reused for every connection
    2. At most `workers` connections are handled at the same time
    3. Extra connections wait in the queue

=============================================================================
THREAD POOL ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            ThreadPool                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   submit(func) ──► ┌───────────────────────────────┐                │
    │                    │  Task Queue (unbounded FIFO)  │                │
    │                    └───────────────┬───────────────┘                │
    │                                    │ get()                          │
    │              ┌─────────────────────┼─────────────────────┐          │
    │              ▼                     ▼                     ▼          │
    │        ┌──────────┐          ┌──────────┐          ┌──────────┐     │
    │        │ Worker 0 │          │ Worker 1 │   ...    │ Worker N │     │
    │        └──────────┘          └──────────┘          └──────────┘     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The queue is unbounded: submit() never blocks the accept loop. The number
of in-flight connections is still bounded by the worker count; anything
beyond that waits its turn.

=============================================================================
FAILURE ISOLATION
=============================================================================

A unit that raises is logged and counted. The worker that ran it goes
straight back to the queue; one malformed connection never takes a
worker (or the pool) down with it.

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"        # Waiting for task
    BUSY = "busy"        # Executing task
    STOPPED = "stopped"  # Thread exited


@dataclass
class Task:
    """
    A deferred function call: "call func(*args, **kwargs) later".

    Attributes:
        func: The function to execute.
        args: Positional arguments.
        kwargs: Keyword arguments.
        submitted_at: When the task was queued (for queue wait logging).
    """

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.monotonic)


class Worker(threading.Thread):
    """
    Worker thread that processes tasks from the queue.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Worker Loop                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Wait for task from queue                                       │
    │   2. None is the poison pill → exit                                 │
    │   3. Execute the task, logging any exception                        │
    │   4. task_done(), tell the pool, go back to 1                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        task_queue: queue.Queue,
        worker_id: int,
        on_finished: Callable[[], None],
        idle_timeout: float = 1.0,
    ):
        super().__init__(name=f"msgserver-worker-{worker_id}", daemon=True)
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout
        self._on_finished = on_finished

        self.state = WorkerState.IDLE
        self._shutdown = threading.Event()

        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                # Timeout so we notice shutdown() even without a poison pill
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            if task is None:
                self.task_queue.task_done()
                break

            try:
                self._execute_task(task)
            finally:
                self.task_queue.task_done()
                self._on_finished()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.monotonic()
        waited = start_time - task.submitted_at

        try:
            task.func(*task.args, **task.kwargs)
            elapsed = time.monotonic() - start_time
            logger.debug(
                f"Worker {self.worker_id} completed task in {elapsed:.3f}s "
                f"(queued {waited:.3f}s)"
            )
            self.tasks_completed += 1

        except Exception as e:
            # One bad unit must not kill the worker
            elapsed = time.monotonic() - start_time
            logger.exception(
                f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}"
            )
            self.tasks_failed += 1

        finally:
            self.state = WorkerState.IDLE

    def shutdown(self):
        """Signal the worker to stop after its current task."""
        self._shutdown.set()


class ThreadPool:
    """
    Fixed-size thread pool.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ThreadPool Usage                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   pool = ThreadPool(workers=4)                                       │
    │   pool.start()                                                       │
    │                                                                      │
    │   pool.submit(handle_connection, args=(conn,))                      │
    │                                                                      │
    │   pool.wait_for_drain(timeout=5.0)   # in-flight work finished?     │
    │   pool.shutdown()                                                    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(self, workers: int = 16, idle_timeout: float = 1.0):
        """
        Args:
            workers: Number of worker threads, created by start().
            idle_timeout: How often an idle worker re-checks for shutdown.
        """
        if workers < 1:
            raise ValueError("workers must be >= 1")

        self._worker_count = workers
        self.idle_timeout = idle_timeout

        # maxsize=0 → unbounded; submit() never blocks
        self._task_queue: queue.Queue[Optional[Task]] = queue.Queue()

        self._workers: list[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._shutdown = False

        # Tasks submitted but not yet finished (queued + running)
        self._pending = 0
        self._drained = threading.Condition(self._lock)

    def start(self):
        """Create and start the worker threads."""
        with self._lock:
            if self._started:
                return
            if self._shutdown:
                raise RuntimeError("Thread pool has been shut down")

            logger.debug(f"Starting thread pool with {self._worker_count} workers")
            for worker_id in range(self._worker_count):
                worker = Worker(
                    task_queue=self._task_queue,
                    worker_id=worker_id,
                    on_finished=self._task_finished,
                    idle_timeout=self.idle_timeout,
                )
                self._workers.append(worker)
                worker.start()

            self._started = True

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
    ) -> None:
        """
        Queue a task for execution.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        with self._lock:
            if not self._started:
                raise RuntimeError("Thread pool not started")
            if self._shutdown:
                raise RuntimeError("Thread pool is shutting down")
            self._pending += 1

        self._task_queue.put(Task(func=func, args=args, kwargs=kwargs or {}))

    def _task_finished(self):
        with self._drained:
            self._pending -= 1
            if self._pending == 0:
                self._drained.notify_all()

    def wait_for_drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every submitted task has finished.

        Returns:
            True if drained, False if the timeout expired first.
        """
        with self._drained:
            return self._drained.wait_for(lambda: self._pending == 0, timeout=timeout)

    def shutdown(
        self,
        wait: bool = True,
        timeout: Optional[float] = None,
        cancel: Optional[Callable[[Task], None]] = None,
    ):
        """
        Stop the pool. Safe to call more than once.

        Args:
            wait: Drain in-flight and queued tasks before stopping workers.
            timeout: Upper bound on the drain. Tasks still running after it
                     are not interrupted; their threads are daemons.
            cancel: Called with every task still queued once the drain is
                    over. Those tasks never run. Without it they are
                    dropped silently.
        """
        with self._lock:
            if not self._started or self._shutdown:
                return
            self._shutdown = True

        logger.debug("Shutting down thread pool...")

        if wait and not self.wait_for_drain(timeout):
            logger.warning(
                f"Thread pool drain timed out with {self._pending} task(s) outstanding"
            )

        cancelled = self._cancel_queued(cancel)
        if cancelled:
            logger.info(f"Cancelled {cancelled} queued task(s)")

        # ─────────────────────────────────────────────────────────────────
        # SEND POISON PILLS
        # ─────────────────────────────────────────────────────────────────
        for worker in self._workers:
            worker.shutdown()
            self._task_queue.put(None)

        # Busy workers are left to finish on their own (daemon threads)
        for worker in self._workers:
            if worker.state != WorkerState.BUSY:
                worker.join(timeout=2.0)

        logger.debug("Thread pool shutdown complete")

    def _cancel_queued(self, cancel: Optional[Callable[[Task], None]]) -> int:
        """Empty the queue before the poison pills go in. Returns the count."""
        cancelled = 0
        while True:
            try:
                task = self._task_queue.get_nowait()
            except queue.Empty:
                break

            try:
                if task is not None and cancel is not None:
                    cancel(task)
            except Exception as e:
                logger.exception(f"Cancelling queued task failed: {e}")
            finally:
                self._task_queue.task_done()
                if task is not None:
                    cancelled += 1
                    self._task_finished()
        return cancelled

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def threads(self) -> tuple:
        return tuple(self._workers)

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.IDLE)

    @property
    def queue_size(self) -> int:
        return self._task_queue.qsize()

    @property
    def pending(self) -> int:
        """Tasks submitted but not finished (queued + running)."""
        return self._pending

    @property
    def stats(self) -> dict:
        return {
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
                "idle": self.idle_workers,
            },
            "tasks": {
                "queued": self.queue_size,
                "pending": self._pending,
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }
