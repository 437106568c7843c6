"""Asynchronous notification dispatch to driver devices."""

import asyncio
import logging
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from ..core.exceptions import DeliveryFailedError, MatchingError, NotFoundError
from ..core.retry import RetryConfig
from ..delivery.providers import DeliveryProvider
from ..match_logging import log_context, log_job_context
from ..metrics import record_notification
from ..metrics.prometheus_exporter import ridematch_delivery_seconds, ridematch_dispatch_queue_depth
from .availability_cache import AvailabilityCache

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    RETRY_WAIT = "retry_wait"
    DELIVERED = "delivered"
    DEAD = "dead"

    @property
    def terminal(self) -> bool:
        return self in (JobState.DELIVERED, JobState.DEAD)


@dataclass
class NotificationJob:
    job_id: str
    driver_id: str
    message: dict[str, Any]
    # Snapshot taken at enqueue time; None when the lookup failed (see token_error)
    device_token: str | None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    token_error: str | None = None
    batch_id: str | None = None
    attempts: int = 0
    state: JobState = JobState.QUEUED
    last_error: str | None = None


class DeadLetterReporter(Protocol):
    def report(self, job: NotificationJob) -> None: ...


class LoggingDeadLetterReporter:
    """Reports dead jobs on the error log for operators."""

    def report(self, job: NotificationJob) -> None:
        with log_job_context(job.job_id, job.driver_id):
            logger.error(
                f"Notification job {job.job_id} for driver {job.driver_id} is dead after "
                f"{job.attempts} attempts: {job.last_error}"
            )


class NotificationDispatcher:
    """Queues notification jobs and delivers them from a pool of worker tasks.

    ``enqueue`` and ``enqueue_batch`` resolve device tokens and queue jobs;
    they never wait for delivery. All of a call's jobs are queued together
    after its last await, so cancelling a call leaves nothing behind.
    Failed attempts are retried with exponential backoff up to
    ``retry_config.max_attempts``; exhausted jobs become DEAD and go to the
    dead letter reporter.
    """

    def __init__(
        self,
        cache: AvailabilityCache,
        provider: DeliveryProvider,
        retry_config: RetryConfig | None = None,
        workers: int = 4,
        send_timeout_seconds: float = 5.0,
        reporter: DeadLetterReporter | None = None,
        max_tracked_jobs: int = 10_000,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self._cache = cache
        self._provider = provider
        self._retry = retry_config or RetryConfig(max_attempts=5)
        self._worker_count = workers
        self._send_timeout = send_timeout_seconds
        self._reporter = reporter or LoggingDeadLetterReporter()
        self._max_tracked_jobs = max_tracked_jobs

        self._queue: asyncio.Queue[list[NotificationJob]] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._retry_tasks: set[asyncio.Task[None]] = set()
        self._jobs: OrderedDict[str, NotificationJob] = OrderedDict()
        self.dead_jobs: deque[NotificationJob] = deque(maxlen=max_tracked_jobs)
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    @property
    def pending(self) -> int:
        """Jobs not yet delivered or dead."""
        return self._pending

    async def start(self) -> None:
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"notification-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info(f"Notification dispatcher started with {self._worker_count} workers")

    async def stop(self, drain: bool = True, timeout: float | None = None) -> None:
        """Stop the worker pool, optionally waiting for pending jobs first."""
        if drain and self.running:
            try:
                await asyncio.wait_for(self.join(), timeout)
            except TimeoutError:
                logger.warning(f"Dispatcher drain timed out with {self._pending} jobs pending")

        tasks = [*self._workers, *self._retry_tasks]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._retry_tasks.clear()

        if self._pending:
            logger.warning(f"Dispatcher stopped with {self._pending} undelivered jobs")
        else:
            logger.info("Notification dispatcher stopped")

    async def join(self) -> None:
        """Wait until every enqueued job is delivered or dead."""
        await self._idle.wait()

    async def enqueue(self, driver_id: str, message: dict[str, Any]) -> str:
        """Queue one notification and return its job id without waiting for delivery."""
        token, token_error = await asyncio.to_thread(self._resolve_token, driver_id)
        job = self._new_job(driver_id, message, token, token_error)
        self._submit([job])
        return job.job_id

    async def enqueue_batch(self, driver_ids: list[str], message: dict[str, Any]) -> list[str]:
        """Queue one notification per driver, delivered with a single batch call.

        Returns job ids in the order of ``driver_ids``.
        """
        if not driver_ids:
            return []
        resolved = await asyncio.to_thread(
            lambda: [self._resolve_token(driver_id) for driver_id in driver_ids]
        )
        batch_id = str(uuid.uuid4())
        jobs = [
            self._new_job(driver_id, message, token, token_error, batch_id=batch_id)
            for driver_id, (token, token_error) in zip(driver_ids, resolved, strict=True)
        ]
        self._submit(jobs)
        return [job.job_id for job in jobs]

    def get_job(self, job_id: str) -> NotificationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Notification job {job_id} not found", {"job_id": job_id})
        return job

    def _resolve_token(self, driver_id: str) -> tuple[str | None, str | None]:
        try:
            token = self._cache.get_device_token(driver_id)
        except MatchingError as e:
            logger.warning(f"Device token lookup failed for driver {driver_id}: {e.message}")
            return None, f"{type(e).__name__}: {e.message}"
        if not token:
            return None, "no device token registered"
        return token, None

    def _new_job(
        self,
        driver_id: str,
        message: dict[str, Any],
        token: str | None,
        token_error: str | None,
        batch_id: str | None = None,
    ) -> NotificationJob:
        return NotificationJob(
            job_id=str(uuid.uuid4()),
            driver_id=driver_id,
            message=dict(message),
            device_token=token,
            token_error=token_error,
            batch_id=batch_id,
        )

    def _submit(self, jobs: list[NotificationJob]) -> None:
        for job in jobs:
            self._track(job)
        self._pending += len(jobs)
        self._idle.clear()
        self._queue.put_nowait(jobs)
        ridematch_dispatch_queue_depth.set(self._queue.qsize())
        record_notification("enqueued", len(jobs))

    def _track(self, job: NotificationJob) -> None:
        self._jobs[job.job_id] = job
        while len(self._jobs) > self._max_tracked_jobs:
            oldest_id, oldest = next(iter(self._jobs.items()))
            if not oldest.state.terminal:
                break
            del self._jobs[oldest_id]

    async def _worker(self, worker_id: int) -> None:
        while True:
            jobs = await self._queue.get()
            ridematch_dispatch_queue_depth.set(self._queue.qsize())
            try:
                with log_context(worker=worker_id):
                    await self._deliver(jobs)
            except Exception:
                # Jobs must not be lost with the worker: count the attempt as failed
                logger.exception(f"Worker {worker_id} crashed delivering {len(jobs)} jobs")
                for job in jobs:
                    if job.state is JobState.IN_FLIGHT:
                        self._on_failure(job, "internal dispatcher error")
            finally:
                self._queue.task_done()

    async def _deliver(self, jobs: list[NotificationJob]) -> None:
        for job in jobs:
            job.state = JobState.IN_FLIGHT
            job.attempts += 1

        missing = [job for job in jobs if job.device_token is None]
        if missing:
            resolved = await asyncio.to_thread(
                lambda: [self._resolve_token(job.driver_id) for job in missing]
            )
            for job, (token, token_error) in zip(missing, resolved, strict=True):
                job.device_token = token
                job.token_error = token_error

        ready = [job for job in jobs if job.device_token is not None]
        for job in jobs:
            if job.device_token is None:
                self._on_failure(job, f"device token unavailable ({job.token_error})")

        if not ready:
            return

        tokens = list(dict.fromkeys(job.device_token for job in ready if job.device_token))
        results, error = await self._call_provider(tokens, ready[0].message)

        for job in ready:
            if results.get(job.device_token or "", False):
                self._on_success(job)
            else:
                self._on_failure(job, error or "rejected by delivery provider")

    async def _call_provider(
        self, tokens: list[str], message: dict[str, Any]
    ) -> tuple[dict[str, bool], str | None]:
        start_time = time.perf_counter()
        try:
            if len(tokens) == 1:
                ok = await asyncio.wait_for(
                    self._provider.send(tokens[0], message), self._send_timeout
                )
                return {tokens[0]: bool(ok)}, None
            results = await asyncio.wait_for(
                self._provider.send_batch(tokens, message), self._send_timeout
            )
            return dict(results), None
        except TimeoutError:
            return {}, f"delivery timed out after {self._send_timeout}s"
        except DeliveryFailedError as e:
            return {}, e.message
        except Exception as e:
            logger.exception("Delivery provider raised unexpectedly")
            return {}, f"{type(e).__name__}: {e}"
        finally:
            ridematch_delivery_seconds.observe(time.perf_counter() - start_time)

    def _on_success(self, job: NotificationJob) -> None:
        job.state = JobState.DELIVERED
        job.last_error = None
        record_notification("delivered")
        with log_job_context(job.job_id, job.driver_id):
            logger.debug(f"Delivered job {job.job_id} on attempt {job.attempts}")
        self._finish()

    def _on_failure(self, job: NotificationJob, reason: str) -> None:
        job.last_error = reason
        record_notification("failed")

        if job.attempts >= self._retry.max_attempts:
            job.state = JobState.DEAD
            self.dead_jobs.append(job)
            record_notification("dead")
            self._reporter.report(job)
            self._finish()
            return

        delay = self._retry.delay_for(job.attempts - 1)
        job.state = JobState.RETRY_WAIT
        with log_job_context(job.job_id, job.driver_id):
            logger.warning(
                f"Delivery of job {job.job_id} failed (attempt {job.attempts}/"
                f"{self._retry.max_attempts}), retrying in {delay:.2f}s: {reason}"
            )
        task = asyncio.get_running_loop().create_task(self._requeue_later(job, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue_later(self, job: NotificationJob, delay: float) -> None:
        await asyncio.sleep(delay)
        job.state = JobState.QUEUED
        self._queue.put_nowait([job])
        ridematch_dispatch_queue_depth.set(self._queue.qsize())

    def _finish(self) -> None:
        self._pending -= 1
        if self._pending <= 0:
            self._pending = 0
            self._idle.set()
