import uuid
from typing import Any, List, Mapping, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    ScoredPoint,
    VectorParams,
)

from app.settings import Settings

# one collection per namespace
NAMESPACE_JOB_DESCRIPTIONS = "job_descriptions"
NAMESPACE_SCORING_RUBRICS = "scoring_rubrics"
NAMESPACE_CASE_STUDIES = "case_studies"

INDEXED_FIELDS = ("document_type", "job_title")


def get_client(settings: Settings) -> AsyncQdrantClient:
    return AsyncQdrantClient(url=settings.QDRANT_URL, api_key=settings.QDRANT_API_KEY or None)


def build_filter(filters: Optional[Mapping[str, Any]]) -> Optional[Filter]:
    must = []
    for key, value in (filters or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            must.append(FieldCondition(key=key, match=MatchAny(any=list(value))))
        else:
            must.append(FieldCondition(key=key, match=MatchValue(value=value)))
    return Filter(must=must) if must else None


def stable_point_id(*parts: Any) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, "::".join(str(p) for p in parts)))


class VectorStore:
    def __init__(self, client: AsyncQdrantClient):
        self.client = client

    async def ensure_collection(self, name: str, vector_size: int) -> None:
        if not await self.client.collection_exists(name):
            await self.client.create_collection(
                collection_name=name,
                vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
            )
        info = await self.client.get_collection(name)
        existing = set((info.payload_schema or {}).keys())
        for field in INDEXED_FIELDS:
            if field not in existing:
                await self.client.create_payload_index(
                    collection_name=name,
                    field_name=field,
                    field_schema=PayloadSchemaType.KEYWORD,
                )

    async def upsert(self, name: str, points: List[PointStruct]) -> None:
        await self.client.upsert(collection_name=name, points=points)

    async def search(
        self,
        name: str,
        vector: List[float],
        limit: int,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[ScoredPoint]:
        if not await self.client.collection_exists(name):
            return []
        response = await self.client.query_points(
            collection_name=name,
            query=vector,
            query_filter=build_filter(filters),
            limit=limit,
            with_payload=True,
        )
        return list(response.points)

    async def delete_collection(self, name: str) -> None:
        if await self.client.collection_exists(name):
            await self.client.delete_collection(collection_name=name)

    async def list_collections(self) -> List[str]:
        collections = await self.client.get_collections()
        return [col.name for col in collections.collections]
