"""
Fixed-size worker pool for CPU-heavy fact computation.

Each worker thread owns its own task queue, and tasks are assigned
round-robin to live workers. Every task carries a timeout. On expiry the
caller's future is rejected and the task is abandoned; the worker keeps
running it to completion and its late result is dropped.

An ordinary exception from a task rejects only that task. A task that
escapes with a non-Exception BaseException (SystemExit, KeyboardInterrupt
and the like) kills its worker: the running task and everything still
queued to that worker are rejected with WorkerCrashedError. Dead workers
are not respawned; the pool continues with the remaining workers.
"""

import concurrent.futures
import itertools
import logging
import queue
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import PoolShutdownError, TaskTimeoutError, WorkerCrashedError

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
DEFAULT_TASK_TIMEOUT = 30.0

_STOP = object()


@dataclass
class WorkerTask:
    """One unit of offloaded work."""
    id: str
    type: str
    fn: Callable[..., Any]
    args: Tuple[Any, ...]
    timeout: float
    future: concurrent.futures.Future = field(default_factory=concurrent.futures.Future)
    timer: Optional[threading.Timer] = None


def _reject(task: WorkerTask, error: BaseException) -> None:
    if task.timer is not None:
        task.timer.cancel()
    try:
        task.future.set_exception(error)
    except concurrent.futures.InvalidStateError:
        # Already timed out or completed
        pass


def _resolve(task: WorkerTask, value: Any) -> None:
    if task.timer is not None:
        task.timer.cancel()
    try:
        task.future.set_result(value)
    except concurrent.futures.InvalidStateError:
        logger.debug("Dropping late result for abandoned task %s", task.id)


class _Worker:
    def __init__(self, worker_id: int, pool: "WorkerPool"):
        self.id = worker_id
        self.pool = pool
        self.queue: "queue.Queue[Any]" = queue.Queue()
        self.alive = True
        self.current: Optional[WorkerTask] = None
        self.completed = 0
        self.thread = threading.Thread(target=self._run, name=f"fact-worker-{worker_id}",
                                       daemon=True)
        self.thread.start()

    def _run(self) -> None:
        while True:
            task = self.queue.get()
            if task is _STOP:
                return
            if task.future.done():
                continue
            self.current = task
            try:
                value = task.fn(*task.args)
            except Exception as e:
                _reject(task, e)
            except BaseException as e:
                self._crash(task, e)
                return
            else:
                _resolve(task, value)
            finally:
                self.current = None
            self.completed += 1

    def _crash(self, task: WorkerTask, error: BaseException) -> None:
        with self.pool._lock:
            self.alive = False
        logger.error("Worker %d crashed on task %s (%s): %r", self.id, task.id, task.type, error)
        lost = [task]
        while True:
            try:
                pending = self.queue.get_nowait()
            except queue.Empty:
                break
            if pending is not _STOP:
                lost.append(pending)
        for lost_task in lost:
            _reject(lost_task, WorkerCrashedError(self.id, lost_task.id))
        if len(lost) > 1:
            logger.warning("Worker %d crash rejected %d queued tasks", self.id, len(lost) - 1)


class WorkerPool:
    """A fixed pool of worker threads with per-task timeouts."""

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS,
                 default_timeout: float = DEFAULT_TASK_TIMEOUT):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.default_timeout = default_timeout
        self._workers: List[_Worker] = [_Worker(i, self) for i in range(max_workers)]
        self._cycle = itertools.cycle(range(max_workers))
        self._lock = threading.Lock()
        self._shutdown = False
        self._submitted = 0
        self._timed_out = 0

    @property
    def size(self) -> int:
        return len(self._workers)

    def live_workers(self) -> int:
        return sum(1 for w in self._workers if w.alive)

    def _next_worker(self) -> _Worker:
        for _ in range(len(self._workers)):
            worker = self._workers[next(self._cycle)]
            if worker.alive:
                return worker
        raise PoolShutdownError("No live workers remain in the pool")

    def submit(self, fn: Callable[..., Any], *args: Any, task_type: str = "fact",
               timeout: Optional[float] = None) -> concurrent.futures.Future:
        """Queue fn(*args) on the next live worker and return its future."""
        with self._lock:
            if self._shutdown:
                raise PoolShutdownError("Worker pool is shut down")
            worker = self._next_worker()
            self._submitted += 1
            task = WorkerTask(id=uuid.uuid4().hex[:12], type=task_type, fn=fn, args=args,
                              timeout=timeout if timeout is not None else self.default_timeout)
            if task.timeout and task.timeout > 0:
                task.timer = threading.Timer(task.timeout, self._expire, args=(task,))
                task.timer.daemon = True
                task.timer.start()
            worker.queue.put(task)
        return task.future

    def _expire(self, task: WorkerTask) -> None:
        if task.future.done():
            return
        with self._lock:
            self._timed_out += 1
        logger.warning("Task %s (%s) timed out after %ss", task.id, task.type, task.timeout)
        _reject(task, TaskTimeoutError(task.id, task.timeout))

    def run(self, fn: Callable[..., Any], *args: Any, task_type: str = "fact",
            timeout: Optional[float] = None) -> Any:
        """Submit and wait. Runs inline when no worker is left."""
        try:
            future = self.submit(fn, *args, task_type=task_type, timeout=timeout)
        except PoolShutdownError:
            if self._shutdown:
                raise
            logger.warning("No live workers; running %s task inline", task_type)
            return fn(*args)
        return future.result()

    def stats(self) -> Dict[str, int]:
        return {
            "workers": self.size,
            "live_workers": self.live_workers(),
            "submitted": self._submitted,
            "completed": sum(w.completed for w in self._workers),
            "timed_out": self._timed_out,
        }

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
        for worker in self._workers:
            if worker.alive:
                worker.queue.put(_STOP)
        if wait:
            for worker in self._workers:
                worker.thread.join(timeout=1.0)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()
