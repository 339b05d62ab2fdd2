from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_container
from app.container import Container
from domain.models import DocumentType, EvaluationJob, JobStatus
from domain.schemas import EvaluateRequest, JobQueuedResponse

router = APIRouter()


@router.post("/evaluate", response_model=JobQueuedResponse, status_code=202)
async def evaluate(body: EvaluateRequest, container: Container = Depends(get_container)) -> JobQueuedResponse:
    documents = container.documents
    if not documents.exists(body.cv_id, DocumentType.CV.value):
        raise HTTPException(status_code=404, detail=f"CV {body.cv_id} not found")
    if not documents.exists(body.project_report_id, DocumentType.PROJECT_REPORT.value):
        raise HTTPException(status_code=404, detail=f"Project report {body.project_report_id} not found")

    job_id = container.jobs.create_job(body.job_title, body.cv_id, body.project_report_id)
    container.workers.enqueue(EvaluationJob(
        job_id=job_id,
        job_title=body.job_title,
        cv_id=body.cv_id,
        project_report_id=body.project_report_id,
    ))
    view = container.jobs.get(job_id)
    return JobQueuedResponse(id=job_id, status=JobStatus.QUEUED.value, created_at=view["created_at"])
