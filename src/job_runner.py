"""
In-process job queue for scan and translation units of work.

Jobs are queued with :meth:`JobRunner.dispatch` and executed by a fixed pool
of asyncio workers. Every attempt is bounded by the job's timeout; failed
attempts are retried with exponential backoff and jitter until the job runs
out of tries, after which it is logged as permanently failed.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List

from tqdm.asyncio import tqdm

logger = logging.getLogger(__name__)


class JobFailedError(Exception):
    """A job that exhausted its tries. Collected in :class:`JobReport`, never raised to callers."""

    def __init__(self, job_name: str, attempts: int, cause: BaseException):
        super().__init__(f"Job '{job_name}' failed after {attempts} attempt(s): {cause!r}")
        self.job_name = job_name
        self.attempts = attempts
        self.cause = cause


@dataclass
class Job:
    name: str
    factory: Callable[[], Awaitable[Any]]
    timeout: float
    max_tries: int = 3


@dataclass
class JobReport:
    succeeded: List[str] = field(default_factory=list)
    failed: List[JobFailedError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


class JobRunner:
    def __init__(
            self,
            concurrency: int = 5,
            base_delay: float = 1.0,
            jitter: float = 1.0,
            show_progress: bool = True
    ):
        self.concurrency = max(1, concurrency)
        self.base_delay = base_delay
        self.jitter = jitter
        self.show_progress = show_progress
        self._pending: List[Job] = []

    def dispatch(self, job: Job) -> None:
        self._pending.append(job)

    @property
    def pending(self) -> List[Job]:
        return list(self._pending)

    def _retry_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1)) + random.uniform(0, self.jitter)

    async def _run_job(self, job: Job, report: JobReport) -> None:
        last_exc: BaseException = RuntimeError("job was never attempted")
        for attempt in range(1, job.max_tries + 1):
            try:
                await asyncio.wait_for(job.factory(), timeout=job.timeout)
                report.succeeded.append(job.name)
                return
            except asyncio.TimeoutError as timeout_exc:
                last_exc = timeout_exc
                logger.warning(f"Job '{job.name}' timed out after {job.timeout}s (attempt {attempt}/{job.max_tries}).")
            except Exception as exc:
                last_exc = exc
                logger.warning(f"Job '{job.name}' failed (attempt {attempt}/{job.max_tries}): {exc}")

            if attempt < job.max_tries:
                delay = self._retry_delay(attempt)
                logger.info(f"Retrying job '{job.name}' in {delay:.2f} seconds.")
                await asyncio.sleep(delay)

        failure = JobFailedError(job.name, job.max_tries, last_exc)
        logger.error(str(failure), exc_info=last_exc)
        report.failed.append(failure)

    async def _worker(self, queue: asyncio.Queue, report: JobReport, progress_bar) -> None:
        while True:
            job = await queue.get()
            try:
                await self._run_job(job, report)
            finally:
                progress_bar.update(1)
                queue.task_done()

    async def run_until_complete(self, description: str = "Running jobs") -> JobReport:
        """Run every dispatched job and wait for all of them to finish or fail permanently."""
        jobs, self._pending = self._pending, []
        report = JobReport()
        if not jobs:
            return report

        queue: asyncio.Queue = asyncio.Queue()
        for job in jobs:
            queue.put_nowait(job)

        progress_bar = tqdm(total=len(jobs), desc=description, unit="job", disable=not self.show_progress)
        workers = [
            asyncio.create_task(self._worker(queue, report, progress_bar))
            for _ in range(min(self.concurrency, len(jobs)))
        ]
        try:
            await queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            progress_bar.close()

        logger.info(f"{description}: {len(report.succeeded)} succeeded, {len(report.failed)} failed permanently.")
        return report
