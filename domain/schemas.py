from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from domain.models import EvaluationResult


class UploadResponse(BaseModel):
    cv_id: str
    project_report_id: str
    uploaded_at: datetime


class EvaluateRequest(BaseModel):
    job_title: str = Field(..., min_length=1, max_length=200)
    cv_id: str
    project_report_id: str


class JobQueuedResponse(BaseModel):
    id: str
    status: str
    created_at: Optional[datetime] = None


class JobInput(BaseModel):
    job_title: str
    cv_id: str
    project_report_id: str


class ErrorInfo(BaseModel):
    code: str
    message: str
    stage: Optional[str] = None
    timestamp: Optional[str] = None


class JobMetadata(BaseModel):
    llm_calls_count: int = 0
    total_tokens_used: int = 0
    retry_count: int = 0
    fallback_count: int = 0
    processing_time_ms: int = 0
    warnings: List[str] = Field(default_factory=list)


class JobStatusResponse(BaseModel):
    id: str
    status: str
    current_stage: Optional[str] = None
    progress_percentage: int = 0
    input: JobInput
    result: Optional[EvaluationResult] = None
    error: Optional[ErrorInfo] = None
    metadata: JobMetadata = Field(default_factory=JobMetadata)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time_seconds: Optional[int] = None
    retry_possible: bool = False

    @classmethod
    def from_view(cls, view: Dict[str, Any]) -> "JobStatusResponse":
        return cls.model_validate(view)


class VectorStoreHealth(BaseModel):
    status: str
    collections: List[str]
    collection_count: int
