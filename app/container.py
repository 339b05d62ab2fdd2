from dataclasses import dataclass
from typing import Optional

import httpx
from qdrant_client import AsyncQdrantClient
from sqlalchemy.orm import sessionmaker

from app.settings import Settings
from domain.services.evaluation_pipeline import EvaluationEngine
from infra.db.session import create_session_factory
from infra.llm.client import GenerationClient
from infra.queue.worker import WorkerPool
from infra.rag.embeddings import EmbeddingClient
from infra.rag.qdrant_client import VectorStore, get_client
from infra.rag.retriever import RetrievalClient
from infra.repositories.files_repository import FilesRepository
from infra.repositories.jobs_repository import JobsRepository
from infra.security.injection_detector import InjectionDetector
from infra.security.screener import SafetyScreener


@dataclass
class Container:
    settings: Settings
    session_factory: sessionmaker
    http: httpx.AsyncClient
    qdrant: AsyncQdrantClient
    documents: FilesRepository
    jobs: JobsRepository
    vector_store: VectorStore
    retrieval: RetrievalClient
    generation: GenerationClient
    screener: SafetyScreener
    detector: InjectionDetector
    engine: EvaluationEngine
    workers: WorkerPool

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.qdrant.close()


def build_container(
    settings: Settings,
    *,
    database_url: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    qdrant: Optional[AsyncQdrantClient] = None,
) -> Container:
    session_factory = create_session_factory(database_url or f"sqlite:///{settings.SQLITE_PATH}")
    http = http_client or httpx.AsyncClient(timeout=settings.LLM_TIMEOUT_SECONDS)
    qdrant = qdrant or get_client(settings)

    documents = FilesRepository(session_factory)
    jobs = JobsRepository(session_factory)
    vector_store = VectorStore(qdrant)
    retrieval = RetrievalClient(EmbeddingClient(settings, http_client=http), vector_store)
    generation = GenerationClient(settings, http_client=http)
    screener = SafetyScreener(settings, http_client=http)
    detector = InjectionDetector(generation)
    engine = EvaluationEngine(jobs, documents, retrieval, generation, screener, detector)
    workers = WorkerPool(
        engine, jobs,
        concurrency=settings.QUEUE_CONCURRENCY,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        max_deliveries=settings.QUEUE_MAX_DELIVERIES,
    )
    return Container(
        settings=settings,
        session_factory=session_factory,
        http=http,
        qdrant=qdrant,
        documents=documents,
        jobs=jobs,
        vector_store=vector_store,
        retrieval=retrieval,
        generation=generation,
        screener=screener,
        detector=detector,
        engine=engine,
        workers=workers,
    )
