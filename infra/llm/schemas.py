from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class CriterionAssessment(BaseModel):
    score: int = Field(..., ge=1, le=5)
    reasoning: str = Field(..., min_length=20)


class CVEvaluationOutput(BaseModel):
    technical_skills_match: CriterionAssessment
    experience_level: CriterionAssessment
    relevant_achievements: CriterionAssessment
    cultural_fit: CriterionAssessment
    overall_feedback: str = Field(..., min_length=50)
    cv_recommendation: str = Field(..., min_length=100)


class ProjectEvaluationOutput(BaseModel):
    correctness: CriterionAssessment
    code_quality: CriterionAssessment
    resilience: CriterionAssessment
    documentation: CriterionAssessment
    creativity: CriterionAssessment
    overall_feedback: str = Field(..., min_length=50)
    project_recommendation: str = Field(..., min_length=100)


class CVExperience(BaseModel):
    company: str
    role: str
    duration: str = ""
    responsibilities: List[str] = Field(default_factory=list)


class CVEducation(BaseModel):
    degree: str
    institution: str
    year: Optional[str] = None


class CVStructureOutput(BaseModel):
    name: Optional[str] = None
    experience: List[CVExperience] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    education: List[CVEducation] = Field(default_factory=list)
    achievements: List[str] = Field(default_factory=list)


class ProjectStructureOutput(BaseModel):
    structure: str
    implementation: str
    documentation: str


class SuspiciousSection(BaseModel):
    text: str = Field(..., max_length=1000)
    start_index: Optional[int] = None
    end_index: Optional[int] = None


class InjectionDetectionOutput(BaseModel):
    detected: bool
    severity: Literal["low", "medium", "high", "critical"]
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = Field(..., min_length=1)
    suspicious_sections: List[SuspiciousSection] = Field(default_factory=list)
