from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_container
from app.container import Container
from domain.schemas import JobStatusResponse

router = APIRouter()


@router.get("/result/{job_id}", response_model=JobStatusResponse)
async def get_result(job_id: str, container: Container = Depends(get_container)) -> JobStatusResponse:
    job = container.jobs.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="job not found")
    return JobStatusResponse.from_view(job)
