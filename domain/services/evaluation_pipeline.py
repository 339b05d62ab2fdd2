"""Staged evaluation of one CV + project report submission.

Each stage commits its checkpoint before doing any work, and wraps whatever it
raises in ``StageFailure`` so the failing stage is recorded with the error.
Degraded paths (empty retrieval, structuring failure, empty or blocked
synthesis, detector or screener outage) never fail a job.
"""
import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Callable, List, Optional

import httpx

from domain.errors import (
    DocumentNotFoundError,
    EvaluationError,
    SecurityBlockedError,
    StageFailure,
)
from domain.models import (
    STAGE_CHECKPOINTS,
    CVResult,
    EducationEntry,
    EvaluationJob,
    EvaluationResult,
    ExperienceEntry,
    InjectionDetection,
    InjectionProfile,
    ParsedContent,
    ParsedCV,
    ParsedProject,
    ProjectResult,
    RetrievedChunk,
    ScreeningResult,
    Stage,
    UsageStats,
)
from domain.scoring import CV_WEIGHTS, PROJECT_WEIGHTS, build_breakdown, cv_match_rate, project_score
from infra.llm.client import GenerationClient
from infra.llm.prompts import (
    CV_EVAL_SYSTEM_PROMPT,
    CV_EVAL_USER_PROMPT,
    CV_STRUCTURE_SYSTEM_PROMPT,
    CV_STRUCTURE_USER_PROMPT,
    PROJECT_EVAL_SYSTEM_PROMPT,
    PROJECT_EVAL_USER_PROMPT,
    PROJECT_STRUCTURE_SYSTEM_PROMPT,
    PROJECT_STRUCTURE_USER_PROMPT,
    SYNTHESIS_SYSTEM_PROMPT,
    SYNTHESIS_USER_PROMPT,
)
from infra.pdf.parser import parse_pdf
from infra.rag.qdrant_client import (
    NAMESPACE_CASE_STUDIES,
    NAMESPACE_JOB_DESCRIPTIONS,
    NAMESPACE_SCORING_RUBRICS,
)
from infra.rag.retriever import RetrievalClient
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository
from infra.security.injection_detector import InjectionDetector, blocked_message, should_block
from infra.security.screener import SafetyScreener

logger = logging.getLogger(__name__)

REQUIREMENTS_TOP_K = 5
RUBRIC_TOP_K = 3
STRUCTURE_INPUT_CHARS = 5000
SYNTHESIS_TEMPERATURE = 0.4
SYNTHESIS_MAX_TOKENS = 2000
FALLBACK_SUMMARY = "Summary generation completed. Please review the detailed evaluation results."


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _join(chunks: List[RetrievedChunk]) -> str:
    return "\n\n".join(c.content for c in chunks)


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + " ..."


def _blocked_reasons(*results: ScreeningResult) -> List[str]:
    reasons: List[str] = []
    for r in results:
        if r.blocked:
            reasons.extend(r.reasons)
    return reasons


class EvaluationEngine:
    def __init__(
        self,
        jobs: JobsRepository,
        documents: FilesRepository,
        retrieval: RetrievalClient,
        generation: GenerationClient,
        screener: SafetyScreener,
        detector: InjectionDetector,
        extract_text: Callable[[str], ParsedContent] = parse_pdf,
        read_file: Callable[[str], bytes] = _read_bytes,
    ):
        self.jobs = jobs
        self.documents = documents
        self.retrieval = retrieval
        self.generation = generation
        self.screener = screener
        self.detector = detector
        self._extract_text = extract_text
        self._read_file = read_file

    async def run(self, job: EvaluationJob) -> Optional[EvaluationResult]:
        """Drive ``job`` to a terminal state.

        Stage errors end as a failed job and return None. Anything raised
        outside a stage (job store failures) propagates to the caller.
        """
        if self.jobs.is_terminal(job.job_id):
            logger.info(f"Job {job.job_id} is already terminal, skipping")
            return None

        usage = UsageStats()
        started = time.perf_counter()
        logger.info(f"=== Starting evaluation job {job.job_id} ({job.job_title}) ===")
        try:
            result = await self._evaluate(job, usage)
        except StageFailure as failure:
            usage.processing_time_ms = int((time.perf_counter() - started) * 1000)
            logger.error(f"Job {job.job_id} failed at {failure.stage} [{failure.code}]: {failure.message}")
            self.jobs.fail(job.job_id, failure.code, failure.message, failure.stage, usage.as_dict())
            return None

        usage.processing_time_ms = int((time.perf_counter() - started) * 1000)
        self.jobs.complete(job.job_id, result.model_dump(), usage.as_dict())
        logger.info(
            f"=== Job {job.job_id} completed in {usage.processing_time_ms}ms "
            f"(llm_calls={usage.llm_calls_count}, retries={usage.retry_count}, fallbacks={usage.fallback_count}) ===")
        return result

    @contextmanager
    def _stage(self, job_id: str, stage: Stage):
        self.jobs.mark_stage(job_id, stage.value, STAGE_CHECKPOINTS[stage])
        logger.info(f"Job {job_id}: {stage.value} ({STAGE_CHECKPOINTS[stage]}%)")
        try:
            yield
        except StageFailure:
            raise
        except Exception as exc:
            raise StageFailure(stage.value, exc) from exc

    async def _evaluate(self, job: EvaluationJob, usage: UsageStats) -> EvaluationResult:
        with self._stage(job.job_id, Stage.CV_PARSING):
            cv = await self.parse_cv(job.cv_id, usage)
        with self._stage(job.job_id, Stage.CV_EVALUATION):
            cv_result = await self.evaluate_cv(cv, job.job_title, usage)
        with self._stage(job.job_id, Stage.PROJECT_PARSING):
            project = await self.parse_project(job.project_report_id, usage)
        with self._stage(job.job_id, Stage.PROJECT_EVALUATION):
            project_result = await self.evaluate_project(project, job.job_title, usage)
        with self._stage(job.job_id, Stage.SYNTHESIS):
            summary = await self.synthesize(cv_result, project_result, usage)
        with self._stage(job.job_id, Stage.COMPLETING):
            return EvaluationResult.combine(cv_result, project_result, summary)

    # parsing

    async def _load_text(self, document_id: str, label: str) -> str:
        doc = self.documents.get(document_id)
        try:
            data = self._read_file(doc.path)
        except OSError as exc:
            raise DocumentNotFoundError(f"File for document {document_id} not found") from exc

        parsed = doc.parsed_content if doc.parsed_content and doc.parsed_content.text else None
        fresh = parsed is None
        if fresh:
            logger.info(f"Extracting text from {label} {document_id}")
            parsed = await asyncio.to_thread(self._extract_text, doc.path)

        screening = await self.screener.screen_file(data, text=parsed.text)
        if screening.blocked:
            raise SecurityBlockedError(
                f"{label} blocked by security screening: {', '.join(screening.reasons)}",
                screening.reasons,
            )

        if fresh:
            self.documents.cache_text(document_id, parsed)
        return parsed.text

    def _check_injection(
        self, detection: InjectionDetection, profile: InjectionProfile, label: str, usage: UsageStats
    ) -> None:
        if not detection.detected:
            return
        if should_block(detection, profile):
            raise SecurityBlockedError(blocked_message(label, detection), [detection.reason])
        warning = (
            f"Prompt injection suspected in {label} but below threshold "
            f"({detection.severity.value}, confidence {detection.confidence:.2f}), continuing")
        logger.warning(warning)
        usage.warnings.append(warning)

    async def parse_cv(self, cv_id: str, usage: UsageStats) -> ParsedCV:
        text = await self._load_text(cv_id, "CV")
        detection = await self.detector.detect(text, InjectionProfile.CV, usage=usage)
        self._check_injection(detection, InjectionProfile.CV, "CV", usage)

        prompt = CV_STRUCTURE_USER_PROMPT.format(cv_text=_clip(text, STRUCTURE_INPUT_CHARS))
        try:
            structured = await self.generation.generate_cv_structure(CV_STRUCTURE_SYSTEM_PROMPT, prompt, usage=usage)
        except (EvaluationError, httpx.HTTPError) as exc:
            logger.error(f"Failed to structure CV, using basic structure: {exc}")
            usage.warnings.append("CV structuring failed, evaluated from raw text only")
            return ParsedCV(raw_text=text)

        return ParsedCV(
            name=structured.name,
            experience=[ExperienceEntry(**e.model_dump()) for e in structured.experience],
            skills=structured.skills,
            education=[EducationEntry(**e.model_dump()) for e in structured.education],
            achievements=structured.achievements,
            raw_text=text,
        )

    async def parse_project(self, report_id: str, usage: UsageStats) -> ParsedProject:
        text = await self._load_text(report_id, "Project report")
        detection = await self.detector.detect(text, InjectionProfile.PROJECT, usage=usage)
        self._check_injection(detection, InjectionProfile.PROJECT, "Project report", usage)

        prompt = PROJECT_STRUCTURE_USER_PROMPT.format(report_text=_clip(text, STRUCTURE_INPUT_CHARS))
        try:
            structured = await self.generation.generate_project_structure(
                PROJECT_STRUCTURE_SYSTEM_PROMPT, prompt, usage=usage)
        except (EvaluationError, httpx.HTTPError) as exc:
            logger.warning(f"Failed to structure project report, using basic structure: {exc}")
            usage.warnings.append("Project structuring failed, evaluated from raw text only")
            return ParsedProject(raw_text=text)

        return ParsedProject(
            structure=structured.structure or "Not specified",
            implementation=structured.implementation or "Not specified",
            documentation=structured.documentation or "Not specified",
            raw_text=text,
        )

    # scoring

    async def _screen_prompts(self, system_prompt: str, user_prompt: str, label: str) -> None:
        system_check = await self.screener.screen_prompt(system_prompt)
        user_check = await self.screener.screen_prompt(user_prompt)
        reasons = _blocked_reasons(system_check, user_check)
        if system_check.blocked or user_check.blocked:
            raise SecurityBlockedError(f"{label} blocked by security screening: {', '.join(reasons)}", reasons)

    async def evaluate_cv(self, cv: ParsedCV, job_title: str, usage: UsageStats) -> CVResult:
        requirements, rubric = await asyncio.gather(
            self.retrieval.query(
                f"Backend development experience with {job_title} requirements",
                {"document_type": "job_description", "job_title": job_title},
                top_k=REQUIREMENTS_TOP_K,
                namespace=NAMESPACE_JOB_DESCRIPTIONS,
            ),
            self.retrieval.query(
                "CV scoring rubric evaluation criteria",
                {"document_type": "cv_scoring_rubric"},
                top_k=RUBRIC_TOP_K,
                namespace=NAMESPACE_SCORING_RUBRICS,
            ),
        )
        system_prompt = CV_EVAL_SYSTEM_PROMPT.format(
            job_title=job_title, job_description=_join(requirements), rubric=_join(rubric))
        user_prompt = CV_EVAL_USER_PROMPT.format(cv_text=cv.raw_text, context=_join(requirements + rubric))
        await self._screen_prompts(system_prompt, user_prompt, "Prompts")

        evaluation = await self.generation.generate_cv_evaluation(system_prompt, user_prompt, usage=usage)
        breakdown = build_breakdown({name: getattr(evaluation, name).score for name in CV_WEIGHTS}, CV_WEIGHTS)
        result = CVResult(
            cv_match_rate=cv_match_rate(breakdown),
            cv_feedback=evaluation.overall_feedback,
            cv_recommendation=evaluation.cv_recommendation,
            cv_scoring_breakdown=breakdown,
        )
        logger.info(f"CV evaluation: match_rate={result.cv_match_rate:.2f}")
        return result

    async def evaluate_project(self, project: ParsedProject, job_title: str, usage: UsageStats) -> ProjectResult:
        requirements, rubric = await asyncio.gather(
            self.retrieval.query(
                "case study requirements project implementation",
                {"document_type": "case_study_brief"},
                top_k=REQUIREMENTS_TOP_K,
                namespace=NAMESPACE_CASE_STUDIES,
            ),
            self.retrieval.query(
                "project scoring rubric evaluation criteria",
                {"document_type": "project_scoring_rubric"},
                top_k=RUBRIC_TOP_K,
                namespace=NAMESPACE_SCORING_RUBRICS,
            ),
        )
        system_prompt = PROJECT_EVAL_SYSTEM_PROMPT.format(
            job_title=job_title, requirements=_join(requirements), rubric=_join(rubric))
        user_prompt = PROJECT_EVAL_USER_PROMPT.format(
            report_text=project.raw_text, context=_join(requirements + rubric))
        await self._screen_prompts(system_prompt, user_prompt, "Prompts")

        evaluation = await self.generation.generate_project_evaluation(system_prompt, user_prompt, usage=usage)
        breakdown = build_breakdown(
            {name: getattr(evaluation, name).score for name in PROJECT_WEIGHTS}, PROJECT_WEIGHTS)
        result = ProjectResult(
            project_score=project_score(breakdown),
            project_feedback=evaluation.overall_feedback,
            project_recommendation=evaluation.project_recommendation,
            project_scoring_breakdown=breakdown,
        )
        logger.info(f"Project evaluation: score={result.project_score:.2f}")
        return result

    # synthesis

    async def synthesize(self, cv: CVResult, project: ProjectResult, usage: UsageStats) -> str:
        user_prompt = SYNTHESIS_USER_PROMPT.format(
            cv_match_rate=cv.cv_match_rate,
            cv_feedback=cv.cv_feedback,
            project_score=project.project_score,
            project_feedback=project.project_feedback,
        )
        await self._screen_prompts(SYNTHESIS_SYSTEM_PROMPT, user_prompt, "Synthesis prompts")

        summary = (await self.generation.generate_text(
            SYNTHESIS_SYSTEM_PROMPT, user_prompt,
            temperature=SYNTHESIS_TEMPERATURE,
            max_tokens=SYNTHESIS_MAX_TOKENS,
            usage=usage,
        )).strip()
        if not summary:
            logger.warning("Synthesis response is empty, using fallback summary")
            usage.warnings.append("Synthesis response was empty")
            return FALLBACK_SUMMARY

        screening = await self.screener.screen_response(summary)
        if screening.blocked:
            logger.warning(f"Synthesis response blocked by safety screening: {screening.reasons}")
            usage.warnings.append("Synthesis response was blocked by safety screening")
            return FALLBACK_SUMMARY
        return summary
