import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from domain.models import TERMINAL_STATUSES, JobStatus, Stage
from infra.db.models import JobRecord


class JobTransitionError(RuntimeError):
    """Raised when a write would move a terminal job."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobsRepository:
    """Durable job state. Only the worker that owns a job writes to its record."""

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def create_job(self, job_title: str, cv_id: str, report_id: str) -> str:
        jid = f"job_{uuid.uuid4().hex}"
        with self._sessions() as s:
            s.add(JobRecord(id=jid, status=JobStatus.QUEUED.value, progress_percentage=0,
                            job_title=job_title, cv_file_id=cv_id, report_file_id=report_id,
                            job_metadata={}))
            s.commit()
        return jid

    @staticmethod
    def _load_active(s, job_id: str) -> JobRecord:
        job = s.get(JobRecord, job_id)
        if not job:
            raise KeyError(f"job not found: {job_id}")
        if job.status in TERMINAL_STATUSES:
            raise JobTransitionError(f"job {job_id} is already {job.status}")
        return job

    def mark_stage(self, job_id: str, stage: str, progress: int) -> None:
        with self._sessions() as s:
            job = self._load_active(s, job_id)
            if job.status == JobStatus.QUEUED.value:
                job.status = JobStatus.PROCESSING.value
            if job.started_at is None:
                job.started_at = _utcnow()
            job.current_stage = stage
            # never move backwards, even when a job is redelivered
            job.progress_percentage = max(job.progress_percentage or 0, min(max(progress, 0), 100))
            s.commit()

    def complete(self, job_id: str, result: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> None:
        with self._sessions() as s:
            job = self._load_active(s, job_id)
            job.status = JobStatus.COMPLETED.value
            job.current_stage = Stage.COMPLETED.value
            job.progress_percentage = 100
            job.result = result
            job.error = None
            job.completed_at = _utcnow()
            if metadata is not None:
                job.job_metadata = {**(job.job_metadata or {}), **metadata}
            s.commit()

    def fail(
        self,
        job_id: str,
        code: str,
        message: str,
        stage: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._sessions() as s:
            job = self._load_active(s, job_id)
            job.status = JobStatus.FAILED.value
            job.result = None
            job.error = {
                "code": code,
                "message": message,
                "stage": stage,
                "timestamp": _utcnow().isoformat(),
            }
            if metadata is not None:
                job.job_metadata = {**(job.job_metadata or {}), **metadata}
            s.commit()

    def is_terminal(self, job_id: str) -> bool:
        with self._sessions() as s:
            job = s.get(JobRecord, job_id)
            return bool(job) and job.status in TERMINAL_STATUSES

    def get(self, job_id: str) -> Optional[Dict]:
        with self._sessions() as s:
            job = s.get(JobRecord, job_id)
            if not job:
                return None
            out = {
                "id": job.id,
                "status": job.status,
                "current_stage": job.current_stage,
                "progress_percentage": job.progress_percentage,
                "input": {
                    "job_title": job.job_title,
                    "cv_id": job.cv_file_id,
                    "project_report_id": job.report_file_id,
                },
                "result": None,
                "error": None,
                "metadata": dict(job.job_metadata or {}),
                "created_at": job.created_at,
                "started_at": job.started_at,
                "completed_at": job.completed_at,
                "processing_time_seconds": None,
                "retry_possible": False,
            }
            if job.status == JobStatus.COMPLETED.value:
                out["result"] = job.result
                if job.started_at and job.completed_at:
                    out["processing_time_seconds"] = int((job.completed_at - job.started_at).total_seconds())
            if job.status == JobStatus.FAILED.value:
                out["error"] = job.error
                out["retry_possible"] = True
            return out
