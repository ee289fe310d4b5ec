# module for background job control

from __future__ import annotations

import logging
import queue
import sys
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

log = logging.getLogger("minish.jobs")

DEFAULT_MAX_WORKERS = 8


class JobStatus(Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"


@dataclass
class Job:
    id: int
    command: str
    status: JobStatus = JobStatus.RUNNING
    future: Future = field(default_factory=Future, repr=False)


class JobController:
    """Runs background commands on a small pool of daemon workers.

    Ids are allocated before the work is queued, so a caller always gets a
    stable id back even when every worker is busy.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self.max_workers = max(1, max_workers)
        self._lock = threading.Lock()
        self._jobs: Dict[int, Job] = {}
        self._next_id = 1
        self._pending: "queue.Queue[tuple[Job, Callable[[], None]]]" = queue.Queue()
        self._workers: List[threading.Thread] = []
        self._idle = 0

    def spawn(self, command: str, fn: Callable[[], None]) -> Job:
        with self._lock:
            job = Job(id=self._next_id, command=command)
            self._next_id += 1
            self._jobs[job.id] = job
            if self._idle > 0:
                self._idle -= 1
            elif len(self._workers) < self.max_workers:
                self._start_worker()
        self._pending.put((job, fn))
        log.debug("Queued job [%d] %s", job.id, command)
        return job

    def _start_worker(self) -> None:
        t = threading.Thread(target=self._worker_loop, name=f"minish-job-{len(self._workers) + 1}", daemon=True)
        self._workers.append(t)
        t.start()

    def _worker_loop(self) -> None:
        while True:
            job, fn = self._pending.get()
            error: Optional[BaseException] = None
            try:
                fn()
            except Exception as e:
                log.error("Background job [%d] failed: %s", job.id, e)
                print(f"Background job failed: {e}", file=sys.stderr)
                error = e
            with self._lock:
                job.status = JobStatus.COMPLETED
                self._idle += 1
            log.debug("Job [%d] completed", job.id)
            if error is None:
                job.future.set_result(None)
            else:
                job.future.set_exception(error)
            self._pending.task_done()

    def _purge_completed(self) -> None:
        for job_id in [i for i, j in self._jobs.items() if j.status is JobStatus.COMPLETED]:
            del self._jobs[job_id]

    @staticmethod
    def _snapshot(job: Job) -> Job:
        return Job(job.id, job.command, job.status, job.future)

    def list_jobs(self) -> List[Job]:
        """Snapshot every job, then forget the completed ones."""
        with self._lock:
            snapshot = [self._snapshot(j) for _, j in sorted(self._jobs.items())]
            self._purge_completed()
        return snapshot

    def get(self, job_id: int) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            found = None if job is None else self._snapshot(job)
            self._purge_completed()
        return found

    def latest(self) -> Optional[Job]:
        with self._lock:
            found = self._snapshot(self._jobs[max(self._jobs)]) if self._jobs else None
            self._purge_completed()
        return found

    def wait_all(self, timeout: Optional[float] = None) -> None:
        """Block until every job known right now has run."""
        with self._lock:
            futures = [j.future for j in self._jobs.values()]
        for fut in futures:
            try:
                fut.exception(timeout=timeout)
            except FutureTimeout:
                log.warning("Timed out waiting for background jobs")
                return
