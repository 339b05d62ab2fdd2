from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {JobStatus.COMPLETED.value, JobStatus.FAILED.value}


class Stage(str, Enum):
    CV_PARSING = "cv_parsing"
    CV_EVALUATION = "cv_evaluation"
    PROJECT_PARSING = "project_parsing"
    PROJECT_EVALUATION = "project_evaluation"
    SYNTHESIS = "synthesis"
    COMPLETING = "completing"
    COMPLETED = "completed"


# progress committed on entry to each stage
STAGE_CHECKPOINTS: Dict[Stage, int] = {
    Stage.CV_PARSING: 10,
    Stage.CV_EVALUATION: 30,
    Stage.PROJECT_PARSING: 50,
    Stage.PROJECT_EVALUATION: 65,
    Stage.SYNTHESIS: 85,
    Stage.COMPLETING: 95,
    Stage.COMPLETED: 100,
}


class DocumentType(str, Enum):
    CV = "cv"
    PROJECT_REPORT = "project_report"


class InjectionProfile(str, Enum):
    CV = "cv"
    PROJECT = "project"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class Chunk:
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievedChunk:
    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScreeningResult:
    blocked: bool = False
    reasons: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)


@dataclass
class FlaggedSpan:
    start: int
    end: int
    text: str
    reason: str = ""


@dataclass
class InjectionDetection:
    detected: bool
    severity: Severity
    confidence: float
    reason: str
    flagged_spans: List[FlaggedSpan] = field(default_factory=list)

    @classmethod
    def clean(cls, reason: str) -> "InjectionDetection":
        return cls(detected=False, severity=Severity.LOW, confidence=0.0, reason=reason)


@dataclass
class ParsedContent:
    text: str
    pages: int = 0


@dataclass
class StoredDocument:
    id: str
    type: str
    path: str
    name: str
    size: int = 0
    mime_type: str = "application/pdf"
    parsed_content: Optional[ParsedContent] = None


@dataclass
class EvaluationJob:
    """Queue descriptor handed to a worker."""
    job_id: str
    job_title: str
    cv_id: str
    project_report_id: str


@dataclass
class UsageStats:
    llm_calls_count: int = 0
    total_tokens_used: int = 0
    retry_count: int = 0
    fallback_count: int = 0
    processing_time_ms: int = 0
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CriterionScore(BaseModel):
    score: int = Field(..., ge=1, le=5)
    weight: float = Field(..., gt=0.0, le=1.0)
    weighted_score: float


class ExperienceEntry(BaseModel):
    company: str
    role: str
    duration: str = ""
    responsibilities: List[str] = Field(default_factory=list)


class EducationEntry(BaseModel):
    degree: str
    institution: str
    year: Optional[str] = None


class ParsedCV(BaseModel):
    name: Optional[str] = None
    experience: List[ExperienceEntry] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    achievements: List[str] = Field(default_factory=list)
    raw_text: str


class ParsedProject(BaseModel):
    structure: str = "Not specified"
    implementation: str = "Not specified"
    documentation: str = "Not specified"
    raw_text: str


class CVResult(BaseModel):
    cv_match_rate: float = Field(..., ge=0.0, le=1.0)
    cv_feedback: str
    cv_recommendation: str
    cv_scoring_breakdown: Dict[str, CriterionScore]


class ProjectResult(BaseModel):
    project_score: float = Field(..., ge=0.0, le=5.0)
    project_feedback: str
    project_recommendation: str
    project_scoring_breakdown: Dict[str, CriterionScore]


class EvaluationResult(BaseModel):
    cv_match_rate: float
    cv_feedback: str
    cv_recommendation: str
    cv_scoring_breakdown: Dict[str, CriterionScore]
    project_score: float
    project_feedback: str
    project_recommendation: str
    project_scoring_breakdown: Dict[str, CriterionScore]
    overall_summary: str

    @classmethod
    def combine(cls, cv: CVResult, project: ProjectResult, overall_summary: str) -> "EvaluationResult":
        return cls(**cv.model_dump(), **project.model_dump(), overall_summary=overall_summary)
