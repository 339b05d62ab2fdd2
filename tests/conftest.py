import hashlib
import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from qdrant_client import AsyncQdrantClient

from app.settings import Settings
from domain.models import DocumentType, EvaluationJob, ParsedContent
from domain.services.evaluation_pipeline import EvaluationEngine
from infra.db.session import create_session_factory, init_db
from infra.llm.client import GenerationClient
from infra.llm.retry import RetryPolicy
from infra.rag.embeddings import EmbeddingClient
from infra.rag.qdrant_client import VectorStore
from infra.rag.retriever import RetrievalClient, chunk_text
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository
from infra.security.injection_detector import InjectionDetector
from infra.security.screener import SafetyScreener

BASE_URL = "https://llm.test/v1"


def make_settings(**overrides) -> Settings:
    values = dict(
        OPENAI_API_KEY="sk-test",
        OPENAI_BASE_URL=BASE_URL,
        OPENROUTER_API_KEY=None,
        PRIMARY_MODEL="gpt-4o",
        FAST_MODEL="gpt-4o-mini",
        SAFETY_SCREENING_ENABLED=False,
        LOG_FILE=None,
    )
    values.update(overrides)
    return Settings(**values)


def chat_body(content: str, model: str = "gpt-4o", tokens: int = 10) -> Dict:
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": tokens - 2, "completion_tokens": 2, "total_tokens": tokens},
    }


def fake_vector(text: str, dim: int = 8) -> List[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [b / 255 + 0.01 for b in digest[:dim]]


def _reasoning(topic: str) -> str:
    return f"The submission shows solid evidence regarding {topic}."


CV_EVALUATION = {
    "technical_skills_match": {"score": 4, "reasoning": _reasoning("backend skills")},
    "experience_level": {"score": 3, "reasoning": _reasoning("years of experience")},
    "relevant_achievements": {"score": 4, "reasoning": _reasoning("measurable impact")},
    "cultural_fit": {"score": 5, "reasoning": _reasoning("collaboration")},
    "overall_feedback": "Strong backend profile with good API experience and clear ownership of delivered work.",
    "cv_recommendation": (
        "Proceed to the technical interview. Probe distributed systems depth and confirm hands-on "
        "experience with LLM integrations before making an offer."
    ),
}

PROJECT_EVALUATION = {
    "correctness": {"score": 4, "reasoning": _reasoning("prompt chaining")},
    "code_quality": {"score": 4, "reasoning": _reasoning("modular structure")},
    "resilience": {"score": 3, "reasoning": _reasoning("retry handling")},
    "documentation": {"score": 5, "reasoning": _reasoning("the README")},
    "creativity": {"score": 2, "reasoning": _reasoning("extra features")},
    "overall_feedback": "The project meets the brief with a clean pipeline and reasonable failure handling overall.",
    "project_recommendation": (
        "Ask the candidate to walk through the retry design and discuss how long running jobs "
        "would be observed and recovered in production."
    ),
}

CLEAN_DETECTION = {
    "detected": False,
    "severity": "low",
    "confidence": 0.05,
    "reason": "No manipulation attempts found",
    "suspicious_sections": [],
}

SYNTHESIS_TEXT = "The candidate is a strong backend engineer whose project confirms the CV. Recommend an interview."

# system prompt marker -> call kind; checked in order
CALL_KINDS = (
    ("security analyst", "injection"),
    ("structured information from CVs", "cv_structure"),
    ("analyzing project reports", "project_structure"),
    ("how well a candidate's CV", "cv_evaluation"),
    ("Project Report for the role", "project_evaluation"),
    ("hiring assistant", "synthesis"),
)


class FakeProvider:
    """OpenAI-compatible provider double for chat, embeddings and moderation."""

    def __init__(self):
        self.defaults = {
            "injection": json.dumps(CLEAN_DETECTION),
            "cv_structure": json.dumps({
                "name": "Jane Doe",
                "experience": [{"company": "Acme", "role": "Backend Engineer", "duration": "3 years",
                                "responsibilities": ["Built payment APIs"]}],
                "skills": ["python", "fastapi"],
                "education": [{"degree": "BSc Computer Science", "institution": "State University"}],
                "achievements": ["Cut p99 latency by 40%"],
            }),
            "project_structure": json.dumps({
                "structure": "FastAPI service with a worker queue",
                "implementation": "RAG over Qdrant with chained prompts",
                "documentation": "README with setup steps",
            }),
            "cv_evaluation": json.dumps(CV_EVALUATION),
            "project_evaluation": json.dumps(PROJECT_EVALUATION),
            "synthesis": SYNTHESIS_TEXT,
        }
        self.replies: Dict[str, List] = {}
        self.calls: List = []
        self.embedding_inputs: List[str] = []
        self.moderation_inputs: List[str] = []
        self.flagged: Callable[[str], bool] = lambda text: False

    def reply(self, kind: str, *contents) -> None:
        """Queue replies for ``kind``; str is chat content, httpx.Response is returned as-is."""
        self.replies.setdefault(kind, []).extend(contents)

    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.calls]

    def payloads(self, kind: str) -> List[Dict]:
        return [body for k, body in self.calls if k == kind]

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        path = request.url.path
        if path.endswith("/chat/completions"):
            system = body["messages"][0]["content"]
            kind = next(k for marker, k in CALL_KINDS if marker in system)
            self.calls.append((kind, body))
            queued = self.replies.get(kind)
            content = queued.pop(0) if queued else self.defaults[kind]
            if isinstance(content, httpx.Response):
                return content
            return httpx.Response(200, json=chat_body(content, model=body["model"]))
        if path.endswith("/embeddings"):
            self.embedding_inputs.extend(body["input"])
            data = [{"index": i, "embedding": fake_vector(t)} for i, t in enumerate(body["input"])]
            return httpx.Response(200, json={"data": data})
        if path.endswith("/moderations"):
            text = body["input"]
            self.moderation_inputs.append(text)
            flagged = self.flagged(text)
            return httpx.Response(200, json={
                "results": [{"flagged": flagged, "categories": {"violence": flagged, "hate": False}}],
            })
        return httpx.Response(404, json={"error": "unknown route"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


class Sleeps:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def read_text_document(path: str) -> ParsedContent:
    with open(path, encoding="utf-8") as f:
        return ParsedContent(text=f.read(), pages=1)


class PipelineHarness:
    """Fully wired engine over in-memory SQLite, in-memory Qdrant and a fake provider."""

    def __init__(self, tmp_path, provider: FakeProvider, settings: Settings):
        self.tmp_path = tmp_path
        self.provider = provider
        self.settings = settings
        self.sleeps = Sleeps()
        http = provider.client()

        self.session_factory = create_session_factory("sqlite://")
        init_db(self.session_factory)
        self.documents = FilesRepository(self.session_factory)
        self.jobs = JobsRepository(self.session_factory)
        self.qdrant = AsyncQdrantClient(":memory:")
        self.retrieval = RetrievalClient(
            EmbeddingClient(settings, http_client=http, sleep=self.sleeps),
            VectorStore(self.qdrant),
            sleep=self.sleeps,
        )
        self.generation = GenerationClient(
            settings, http_client=http, retry=RetryPolicy(max_attempts=3, sleep=self.sleeps))
        self.screener = SafetyScreener(settings, http_client=http)
        self.detector = InjectionDetector(self.generation)
        self.engine = EvaluationEngine(
            self.jobs, self.documents, self.retrieval, self.generation, self.screener, self.detector,
            extract_text=read_text_document,
        )

    def store(self, ftype: DocumentType, text: str, name: Optional[str] = None) -> str:
        path = self.tmp_path / (name or f"{ftype.value}.txt")
        path.write_text(text, encoding="utf-8")
        return self.documents.save(ftype=ftype.value, path=str(path), name=path.name, size=len(text))

    def submit(self, cv_text: str, report_text: str, job_title: str = "Backend Engineer") -> EvaluationJob:
        cv_id = self.store(DocumentType.CV, cv_text)
        report_id = self.store(DocumentType.PROJECT_REPORT, report_text)
        job_id = self.jobs.create_job(job_title, cv_id, report_id)
        return EvaluationJob(job_id=job_id, job_title=job_title, cv_id=cv_id, project_report_id=report_id)

    async def seed_references(self, job_title: str = "Backend Engineer") -> None:
        docs = (
            ("Backend engineers build APIs, own databases and integrate LLM services.",
             {"document_type": "job_description", "job_title": job_title, "namespace": "job_descriptions"}),
            ("Build a CV evaluation service with retries, RAG context and a job queue.",
             {"document_type": "case_study_brief", "job_title": job_title, "namespace": "case_studies"}),
            ("Technical Skills Match (Weight: 40%): alignment with backend requirements.",
             {"document_type": "cv_scoring_rubric", "namespace": "scoring_rubrics"}),
            ("Correctness (Weight: 30%): prompt design, chaining and context injection.",
             {"document_type": "project_scoring_rubric", "namespace": "scoring_rubrics"}),
        )
        for i, (text, metadata) in enumerate(docs):
            await self.retrieval.upsert(chunk_text(text), {**metadata, "source": f"ref-{i}.pdf"})


CV_TEXT = (
    "Jane Doe\nBackend Engineer at Acme, 3 years.\n"
    "Built payment APIs in Python and FastAPI. Cut p99 latency by 40%.\n"
)
REPORT_TEXT = (
    "Project report: a FastAPI service that queues evaluation jobs, retrieves rubric context "
    "from Qdrant and chains LLM calls with retries.\n"
)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(STORAGE_DIR=str(tmp_path / "storage"))


@pytest.fixture
def session_factory():
    factory = create_session_factory("sqlite://")
    init_db(factory)
    return factory


@pytest.fixture
def sleeps() -> Sleeps:
    return Sleeps()


@pytest.fixture
def harness_factory(tmp_path, provider):
    def build(**overrides) -> PipelineHarness:
        return PipelineHarness(tmp_path, provider, make_settings(STORAGE_DIR=str(tmp_path / "storage"), **overrides))
    return build


@pytest.fixture
def harness(harness_factory) -> PipelineHarness:
    return harness_factory()
