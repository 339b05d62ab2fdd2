import asyncio

from domain.models import EvaluationJob
from infra.queue.worker import WorkerPool
from infra.repositories.jobs_repository import JobsRepository


class RecordingRunner:
    def __init__(self, jobs: JobsRepository, delay: float = 0.01, failures: int = 0, hang: bool = False):
        self.jobs = jobs
        self.delay = delay
        self.failures = failures
        self.hang = hang
        self.calls = []
        self.active = 0
        self.peak = 0

    async def run(self, job: EvaluationJob):
        self.calls.append(job.job_id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            self.jobs.mark_stage(job.job_id, "cv_parsing", 10)
            await asyncio.sleep(60 if self.hang else self.delay)
            if self.failures:
                self.failures -= 1
                raise RuntimeError("job store connection lost")
            self.jobs.complete(job.job_id, {"ok": True})
        finally:
            self.active -= 1


def _jobs(session_factory, count):
    repo = JobsRepository(session_factory)
    descriptors = []
    for i in range(count):
        job_id = repo.create_job("Backend Engineer", f"cv_{i}", f"project_report_{i}")
        descriptors.append(EvaluationJob(job_id, "Backend Engineer", f"cv_{i}", f"project_report_{i}"))
    return repo, descriptors


def _drain(pool, descriptors):
    async def scenario():
        await pool.start()
        for job in descriptors:
            pool.enqueue(job)
        await pool.join()
        await pool.stop()
    asyncio.run(scenario())


def test_pool_bounds_concurrency_and_drains_queue(session_factory):
    repo, descriptors = _jobs(session_factory, 7)
    runner = RecordingRunner(repo, delay=0.02)
    pool = WorkerPool(runner, repo, concurrency=3)

    _drain(pool, descriptors)

    assert runner.peak == 3
    assert sorted(runner.calls) == sorted(j.job_id for j in descriptors)
    assert all(repo.get(j.job_id)["status"] == "completed" for j in descriptors)
    assert not pool.running


def test_timeout_fails_job_with_last_stage(session_factory):
    repo, [job] = _jobs(session_factory, 1)
    pool = WorkerPool(RecordingRunner(repo, hang=True), repo, concurrency=1, job_timeout=0.05)

    _drain(pool, [job])
    view = repo.get(job.job_id)

    assert view["status"] == "failed"
    assert view["error"]["code"] == "JOB_TIMEOUT"
    assert view["error"]["stage"] == "cv_parsing"
    assert view["progress_percentage"] == 10


def test_crashed_job_is_redelivered_once(session_factory):
    repo, [job] = _jobs(session_factory, 1)
    runner = RecordingRunner(repo, failures=1)
    pool = WorkerPool(runner, repo, concurrency=2, max_deliveries=2)

    _drain(pool, [job])

    assert runner.calls == [job.job_id, job.job_id]
    assert repo.get(job.job_id)["status"] == "completed"


def test_redelivery_is_bounded(session_factory):
    repo, [job] = _jobs(session_factory, 1)
    runner = RecordingRunner(repo, failures=5)
    pool = WorkerPool(runner, repo, concurrency=1, max_deliveries=2)

    _drain(pool, [job])
    view = repo.get(job.job_id)

    assert len(runner.calls) == 2
    assert view["status"] == "failed"
    assert view["error"]["code"] == "DELIVERY_EXHAUSTED"
    assert "job store connection lost" in view["error"]["message"]


def test_terminal_jobs_are_skipped(session_factory):
    repo, [job] = _jobs(session_factory, 1)
    repo.complete(job.job_id, {"ok": True})
    runner = RecordingRunner(repo)

    _drain(WorkerPool(runner, repo, concurrency=1), [job])

    assert runner.calls == []
