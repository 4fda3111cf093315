"""In-process background jobs for operator repairs.

One asyncio worker drains a FIFO of job ids and runs each handler on a
thread, so a long repair scan never blocks the event loop. Jobs live only in
memory; the most recent ``history_limit`` finished jobs stay queryable.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
import threading
import uuid
from typing import Any, Callable

from scenemedia.core.request_context import log_context


logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def finished(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


JobHandler = Callable[["JobRecord"], dict | None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobRecord:
    job_id: uuid.UUID
    job_type: str
    handler: JobHandler
    payload: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    progress: dict | None = None
    result: dict | None = None
    error: str | None = None
    cancel_requested: bool = False

    def transition(self, status: JobStatus, **fields) -> None:
        self.status = status
        for key, value in fields.items():
            setattr(self, key, value)
        self.updated_at = _utcnow()


class JobQueue:
    def __init__(self, history_limit: int = 200):
        self.history_limit = history_limit
        self._jobs: OrderedDict[uuid.UUID, JobRecord] = OrderedDict()
        self._lock = threading.Lock()
        self._queue: asyncio.Queue[uuid.UUID] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None

    def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        handler: JobHandler,
        *,
        request_id: str | None = None,
    ) -> JobRecord:
        """Register a job and schedule it. Safe to call from worker threads."""
        if self._queue is None or self._loop is None:
            raise RuntimeError("job queue is not running")
        job = JobRecord(
            job_id=uuid.uuid4(),
            job_type=job_type,
            handler=handler,
            payload=payload,
            request_id=request_id,
        )
        with self._lock:
            self._jobs[job.job_id] = job
            self._prune()
        asyncio.run_coroutine_threadsafe(self._queue.put(job.job_id), self._loop)
        logger.info("job_enqueued", extra={"job_type": job_type, "queued_job_id": str(job.job_id)})
        return job

    def get(self, job_id: uuid.UUID) -> JobRecord | None:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self, *, status: JobStatus | None = None) -> list[JobRecord]:
        with self._lock:
            jobs = list(self._jobs.values())
        return [job for job in jobs if status is None or job.status is status]

    def update_progress(self, job_id: uuid.UUID, progress: dict) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.progress = progress
                job.updated_at = _utcnow()

    def cancel(self, job_id: uuid.UUID) -> JobRecord | None:
        """Cancel a queued job. Running jobs only get ``cancel_requested`` set."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.finished:
                return job
            job.cancel_requested = True
            if job.status is JobStatus.QUEUED:
                job.transition(JobStatus.CANCELLED)
            return job

    async def start(self) -> None:
        if self._worker is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        self._loop = None

    async def join(self) -> None:
        """Block until every scheduled job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _drain(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            job_id = await queue.get()
            try:
                job = self._claim(job_id)
                if job is not None:
                    await self._run(job)
            finally:
                queue.task_done()

    def _claim(self, job_id: uuid.UUID) -> JobRecord | None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.QUEUED:
                return None
            job.transition(JobStatus.RUNNING)
            return job

    async def _run(self, job: JobRecord) -> None:
        try:
            result = await asyncio.to_thread(_call_handler, job)
        except Exception as exc:  # noqa: BLE001
            logger.exception("job_failed", extra={"job_type": job.job_type, "queued_job_id": str(job.job_id)})
            with self._lock:
                job.transition(JobStatus.FAILED, error=str(exc))
            return
        with self._lock:
            job.transition(JobStatus.SUCCEEDED, result=result)
        logger.info("job_succeeded", extra={"job_type": job.job_type, "queued_job_id": str(job.job_id)})

    def _prune(self) -> None:
        finished = [job_id for job_id, job in self._jobs.items() if job.status.finished]
        for job_id in finished[: max(0, len(self._jobs) - self.history_limit)]:
            del self._jobs[job_id]


def _call_handler(job: JobRecord) -> dict | None:
    with log_context(job_id=job.job_id):
        return job.handler(job)


default_queue = JobQueue()


def enqueue_job(job_type: str, payload: dict[str, Any], handler: JobHandler, *, request_id: str | None = None) -> JobRecord:
    return default_queue.enqueue(job_type, payload, handler, request_id=request_id)


def get_job(job_id: uuid.UUID) -> JobRecord | None:
    return default_queue.get(job_id)


def cancel_job(job_id: uuid.UUID) -> JobRecord | None:
    return default_queue.cancel(job_id)


def update_job_progress(job_id: uuid.UUID, progress: dict) -> None:
    default_queue.update_progress(job_id, progress)


async def start_worker() -> None:
    await default_queue.start()


async def stop_worker() -> None:
    await default_queue.stop()


async def wait_for_idle() -> None:
    await default_queue.join()
