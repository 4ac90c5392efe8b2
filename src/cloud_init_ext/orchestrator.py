"""Provisioning orchestrator.

Runs provisioning jobs in the background, off the request path:

    allocate -> register -> playbooks in fixed order -> done

A fixed set of worker tasks reads a bounded queue. When the queue is full new
requests are rejected instead of piling up. The first failing step aborts the
job and triggers exactly one notification attempt.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from ipaddress import IPv4Address
import uuid

import structlog

from cloud_init_ext.allocator import AddressAllocator
from cloud_init_ext.errors import DuplicateAddress, JobRejected, NotificationDeliveryError
from cloud_init_ext.notifications import NotificationSink
from cloud_init_ext.playbooks import REQUIRED_FUNCTIONS, PlaybookCatalog, PlaybookFunction, PlaybookRunner
from cloud_init_ext.registry import ClientRegistry

logger = structlog.get_logger(__name__)


class JobState(StrEnum):
    PENDING = "pending"
    ALLOCATING = "allocating"
    REGISTERING = "registering"
    CONFIGURING = "configuring"
    DONE = "done"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class ProvisioningJob:
    """In-memory state of one provisioning request. Never persisted."""

    hostname: str
    fqdn: str | None = None
    job_id: str = field(default_factory=lambda: f"job_{uuid.uuid4().hex[:12]}")
    correlation_id: str | None = None
    address: IPv4Address | None = None
    state: JobState = JobState.PENDING
    # Index into the required playbooks while CONFIGURING
    step: int | None = None
    error: Exception | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def finished(self) -> bool:
        return self.state in (JobState.DONE, JobState.ABORTED, JobState.CANCELLED)


class ProvisioningOrchestrator:
    """Coordinates allocation, registration and playbook runs for new nodes.

    All collaborators are injected; ``start()`` must be awaited before jobs
    are processed and ``stop()`` on shutdown.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        allocator: AddressAllocator,
        catalog: PlaybookCatalog,
        runner: PlaybookRunner,
        sink: NotificationSink,
        credential: str,
        *,
        max_concurrent_jobs: int = 4,
        max_queued_jobs: int = 64,
        shutdown_grace_period: float = 30.0,
        required_functions: Sequence[PlaybookFunction] = REQUIRED_FUNCTIONS,
    ):
        self.registry = registry
        self.allocator = allocator
        self.catalog = catalog
        self.runner = runner
        self.sink = sink
        self.credential = credential
        self.max_concurrent_jobs = max_concurrent_jobs
        self.shutdown_grace_period = shutdown_grace_period
        self.required_functions = tuple(required_functions)

        self._queue: asyncio.Queue[ProvisioningJob] = asyncio.Queue(maxsize=max_queued_jobs)
        self._workers: list[asyncio.Task] = []
        self._running: dict[str, asyncio.Task] = {}
        self._accepting = False

    @property
    def queued_jobs(self) -> int:
        return self._queue.qsize()

    @property
    def active_jobs(self) -> int:
        return len(self._running)

    async def start(self) -> None:
        """Spawn the worker tasks."""
        if self._workers:
            return
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"provisioning-worker-{n}")
            for n in range(self.max_concurrent_jobs)
        ]
        logger.info(
            "orchestrator_started",
            workers=self.max_concurrent_jobs,
            max_queued=self._queue.maxsize,
        )

    def provision(self, hostname: str, fqdn: str | None = None) -> ProvisioningJob:
        """Queue a provisioning job and return immediately.

        Raises:
            JobRejected: Orchestrator is stopped or the queue is full
        """
        if not self._accepting:
            raise JobRejected("Provisioning is not accepting new jobs")

        job = ProvisioningJob(
            hostname=hostname,
            fqdn=fqdn,
            correlation_id=structlog.contextvars.get_contextvars().get("correlation_id"),
        )
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning("provisioning_queue_full", hostname=hostname, queued=self.queued_jobs)
            raise JobRejected(f"Provisioning queue is full ({self._queue.maxsize} jobs)") from None

        logger.info("provisioning_job_queued", job_id=job.job_id, hostname=hostname, fqdn=fqdn)
        return job

    def cancel(self, job_id: str) -> bool:
        """Cancel a running job. Returns False if it is not running."""
        task = self._running.get(job_id)
        if task is None:
            return False
        return task.cancel()

    async def stop(self) -> None:
        """Stop accepting jobs, drain for the grace period, then cancel the rest."""
        self._accepting = False
        if not self._workers:
            return

        logger.info("orchestrator_stopping", queued=self.queued_jobs, active=self.active_jobs)
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.shutdown_grace_period)
        except TimeoutError:
            logger.warning(
                "shutdown_grace_period_expired",
                queued=self.queued_jobs,
                active=self.active_jobs,
            )

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        while not self._queue.empty():
            job = self._queue.get_nowait()
            job.state = JobState.CANCELLED
            logger.warning("provisioning_job_dropped", job_id=job.job_id, hostname=job.hostname)

        logger.info("orchestrator_stopped")

    async def _worker(self, worker_id: int) -> None:
        current = asyncio.current_task()
        while True:
            job = await self._queue.get()
            task = asyncio.create_task(self.run_job(job), name=job.job_id)
            self._running[job.job_id] = task
            try:
                await task
            except asyncio.CancelledError:
                # Only the job was cancelled; keep serving unless we were too
                if current is not None and current.cancelling():
                    raise
            finally:
                self._running.pop(job.job_id, None)
                self._queue.task_done()

    async def run_job(self, job: ProvisioningJob) -> None:
        """Run one job to completion. Failures are reported, never raised."""
        context = {"job_id": job.job_id, "hostname": job.hostname}
        if job.correlation_id:
            context["correlation_id"] = job.correlation_id

        with structlog.contextvars.bound_contextvars(**context):
            logger.info("provisioning_job_started", fqdn=job.fqdn)
            try:
                await self._execute(job)
            except asyncio.CancelledError:
                job.state = JobState.CANCELLED
                logger.warning("provisioning_job_cancelled", step=job.step, ip=_str(job.address))
                raise
            except Exception as e:
                job.state = JobState.ABORTED
                job.error = e
                logger.error(
                    "provisioning_job_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    ip=_str(job.address),
                    exc_info=True,
                )
                await self._notify(job, e)
                return

            job.state = JobState.DONE
            logger.info("provisioning_job_completed", ip=str(job.address))

    async def _execute(self, job: ProvisioningJob) -> None:
        try:
            job.address = await self._allocate_and_register(job)
        except DuplicateAddress as e:
            logger.warning("allocation_race_lost", ip=e.address, action="retry")
            job.address = await self._allocate_and_register(job)

        job.state = JobState.CONFIGURING
        for step, function in enumerate(self.required_functions):
            job.step = step
            playbook = self.catalog.lookup(function)
            await self.runner.run(playbook, job.address, self.credential)

    async def _allocate_and_register(self, job: ProvisioningJob) -> IPv4Address:
        # Lock spans read + insert so concurrent jobs never pick the same gap
        async with self.registry.pool_lock:
            job.state = JobState.ALLOCATING
            assigned = await self.registry.all_assigned()
            address = self.allocator.next_free(assigned)
            logger.info("address_allocated", ip=str(address), assigned_count=len(assigned))

            job.state = JobState.REGISTERING
            await self.registry.register(address, job.hostname)
        return address

    async def _notify(self, job: ProvisioningJob, error: Exception) -> None:
        try:
            await self.sink.report(job.hostname, error)
        except NotificationDeliveryError as e:
            logger.error("notification_failed", error=str(e))
        except Exception as e:
            logger.error(
                "notification_error",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )


def _str(value: object | None) -> str | None:
    return None if value is None else str(value)
