import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from qdrant_client.models import PointStruct, ScoredPoint

from domain.errors import ProviderResponseError
from domain.models import Chunk, RetrievedChunk
from infra.rag.embeddings import EmbeddingClient
from infra.rag.qdrant_client import VectorStore, stable_point_id

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"
EMBED_BATCH_SIZE = 10
EMBED_BATCH_DELAY = 0.5
UPSERT_BATCH_SIZE = 100


def chunk_text(text: str, size: int = 1000, overlap: int = 150) -> List[Chunk]:
    out, i = [], 0
    n = len(text)
    while i < n:
        piece = text[i:i + size].strip()
        if piece:
            out.append(Chunk(content=piece, metadata={"chunk_index": len(out)}))
        i += max(1, size - overlap)
    return out


def _to_chunk(point: ScoredPoint) -> RetrievedChunk:
    payload = dict(point.payload or {})
    content = payload.pop("content", None)
    if not isinstance(content, str):
        raise ProviderResponseError(f"vector point {point.id} has no text content")
    return RetrievedChunk(content=content, score=float(point.score or 0.0), metadata=payload)


class RetrievalClient:
    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.embedder = embedder
        self.store = store
        self._sleep = sleep

    async def embed(self, text: str) -> List[float]:
        return await self.embedder.embed(text)

    async def query(
        self,
        query_text: str,
        filters: Optional[Mapping[str, Any]] = None,
        top_k: int = 8,
        namespace: Optional[str] = None,
    ) -> List[RetrievedChunk]:
        ns = namespace or DEFAULT_NAMESPACE
        vector = await self.embed(query_text)
        hits = await self.store.search(ns, vector, limit=top_k, filters=filters)
        chunks = sorted((_to_chunk(h) for h in hits), key=lambda c: c.score, reverse=True)
        if not chunks:
            logger.warning(f"No context found in namespace '{ns}' for filters={dict(filters or {})}")
        else:
            logger.info(f"Retrieved {len(chunks)} chunks from '{ns}' (top score={chunks[0].score:.3f})")
        return chunks

    async def upsert(self, chunks: List[Chunk], metadata: Dict[str, Any]) -> int:
        if not chunks:
            return 0
        embeddings: List[List[float]] = []
        total_batches = (len(chunks) + EMBED_BATCH_SIZE - 1) // EMBED_BATCH_SIZE
        for start in range(0, len(chunks), EMBED_BATCH_SIZE):
            batch = chunks[start:start + EMBED_BATCH_SIZE]
            logger.debug(f"Generating embeddings for batch {start // EMBED_BATCH_SIZE + 1}/{total_batches}")
            embeddings.extend(await asyncio.gather(*(self.embed(c.content) for c in batch)))
            if start + EMBED_BATCH_SIZE < len(chunks):
                # stay under the embedding provider's rate limit
                await self._sleep(EMBED_BATCH_DELAY)

        namespace = metadata.get("namespace") or DEFAULT_NAMESPACE
        tags = {k: v for k, v in metadata.items() if k != "namespace"}
        await self.store.ensure_collection(namespace, vector_size=len(embeddings[0]))

        points = []
        for i, (chunk, vector) in enumerate(zip(chunks, embeddings)):
            index = chunk.metadata.get("chunk_index", i)
            points.append(PointStruct(
                id=stable_point_id(
                    tags.get("document_type"), tags.get("job_title") or "default",
                    tags.get("source", ""), index,
                ),
                vector=vector,
                payload={**chunk.metadata, **tags, "chunk_index": index, "content": chunk.content},
            ))
        for start in range(0, len(points), UPSERT_BATCH_SIZE):
            await self.store.upsert(namespace, points[start:start + UPSERT_BATCH_SIZE])

        logger.info(f"Upserted {len(points)} chunks to namespace '{namespace}'")
        return len(points)

    async def delete_namespace(self, namespace: str) -> None:
        await self.store.delete_collection(namespace or DEFAULT_NAMESPACE)
        logger.info(f"Deleted all vectors from namespace: {namespace}")
