import asyncio
import logging
from typing import List, Optional, Protocol, Tuple

from domain.models import EvaluationJob
from infra.repositories.jobs_repository import JobsRepository, JobTransitionError

logger = logging.getLogger(__name__)


class JobRunner(Protocol):
    async def run(self, job: EvaluationJob): ...


class WorkerPool:
    """Bounded pool of asyncio workers draining an in-process job queue.

    A job holds its worker slot for its whole run, backoff sleeps included.
    If the runner raises outside of its own failure handling and the job is
    still open, the descriptor is redelivered up to ``max_deliveries`` times.
    """

    def __init__(
        self,
        engine: JobRunner,
        jobs: JobsRepository,
        concurrency: int = 5,
        job_timeout: float = 300.0,
        max_deliveries: int = 2,
    ):
        self.engine = engine
        self.jobs = jobs
        self.concurrency = max(1, concurrency)
        self.job_timeout = job_timeout
        self.max_deliveries = max(1, max_deliveries)
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"evaluation-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info(f"Started {self.concurrency} evaluation workers (timeout={self.job_timeout}s)")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Evaluation workers stopped")

    def enqueue(self, job: EvaluationJob) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._queue.put_nowait((job, 1))
        logger.info(f"Queued job {job.job_id}")

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, idx: int) -> None:
        while True:
            item: Tuple[EvaluationJob, int] = await self._queue.get()
            job, delivery = item
            try:
                await self._process(job, delivery)
            except Exception:
                logger.exception(f"Worker {idx} could not settle job {job.job_id}")
            finally:
                self._queue.task_done()

    async def _process(self, job: EvaluationJob, delivery: int) -> None:
        if self.jobs.is_terminal(job.job_id):
            logger.info(f"Skipping job {job.job_id}: already terminal")
            return
        try:
            await asyncio.wait_for(self.engine.run(job), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Job {job.job_id} timed out after {self.job_timeout}s")
            self._fail(job, "JOB_TIMEOUT", f"Job exceeded the {self.job_timeout:g}s time limit")
        except Exception as exc:
            logger.exception(f"Job {job.job_id} crashed on delivery {delivery}: {exc}")
            if self.jobs.is_terminal(job.job_id):
                return
            if delivery < self.max_deliveries:
                self._queue.put_nowait((job, delivery + 1))
                logger.info(f"Redelivering job {job.job_id} (delivery {delivery + 1}/{self.max_deliveries})")
            else:
                self._fail(job, "DELIVERY_EXHAUSTED", f"Job failed after {delivery} deliveries: {exc}")

    def _fail(self, job: EvaluationJob, code: str, message: str) -> None:
        view = self.jobs.get(job.job_id)
        stage = view["current_stage"] if view else None
        try:
            self.jobs.fail(job.job_id, code, message, stage)
        except JobTransitionError:
            logger.info(f"Job {job.job_id} reached a terminal state before it could be failed with {code}")
