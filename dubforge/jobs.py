"""Job supervision: cancellable subprocess handles and progress channels."""

import logging
import queue
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from dubforge.ffutil import CancelledError

logger = logging.getLogger(__name__)


class JobHandle:
    """Cancellation token for one job and whichever subprocess it is running."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._lock = threading.Lock()
        self._proc: subprocess.Popen | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._proc = proc
            if self._cancelled:
                proc.kill()

    def detach(self, proc: subprocess.Popen) -> None:
        with self._lock:
            if self._proc is proc:
                self._proc = None

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            proc = self._proc
            if proc is not None and proc.poll() is None:
                logger.info("Killing ffmpeg (pid %s) for job %s", proc.pid, self.job_id)
                proc.kill()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancelledError(f"Job {self.job_id} cancelled")


class JobRegistry:
    """Maps job ids to live handles while the jobs run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, JobHandle] = {}

    @contextmanager
    def track(self, job_id: str, handle: JobHandle | None = None) -> Iterator[JobHandle]:
        """Register ``job_id`` for the duration of the ``with`` block.

        A ``handle`` created ahead of time is registered as-is, so a cancel
        issued before the job started still applies.
        """
        if handle is None:
            handle = JobHandle(job_id)
        with self._lock:
            if job_id in self._handles:
                raise ValueError(f"Job {job_id} is already running")
            self._handles[job_id] = handle
        try:
            yield handle
        finally:
            with self._lock:
                self._handles.pop(job_id, None)

    def cancel(self, job_id: str) -> bool:
        """Cancel a running job. Returns False if no such job is running."""
        with self._lock:
            handle = self._handles.get(job_id)
        if handle is None:
            return False
        handle.cancel()
        return True

    def get(self, job_id: str) -> JobHandle | None:
        with self._lock:
            return self._handles.get(job_id)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)


@dataclass
class ProgressEvent:
    stage: str
    percent: float
    message: str = ""


class ProgressChannel:
    """Single-producer progress stream. Delivery is best effort.

    Percentages never go backwards within one channel; a lower value is
    reported as the highest value seen so far. ``close()`` ends iteration.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._percent = 0.0
        self.closed = False
        self.error: str | None = None

    @property
    def percent(self) -> float:
        return self._percent

    def publish(self, stage: str, percent: float, message: str = "") -> None:
        if self.closed:
            return
        self._percent = max(self._percent, min(100.0, percent))
        self._queue.put(ProgressEvent(stage, round(self._percent, 1), message))

    def close(self, error: str | None = None) -> None:
        if self.closed:
            return
        self.error = error
        self.closed = True
        self._queue.put(self._CLOSED)

    def events(self, timeout: float | None = None) -> Iterator[ProgressEvent]:
        """Yield events until the channel closes.

        Raises queue.Empty if nothing arrives for ``timeout`` seconds.
        """
        while True:
            item = self._queue.get(timeout=timeout)
            if item is self._CLOSED:
                return
            yield item

    def __iter__(self) -> Iterator[ProgressEvent]:
        return self.events()
