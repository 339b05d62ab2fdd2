import logging

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_container
from app.container import Container
from domain.schemas import VectorStoreHealth

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/vector-db/health", response_model=VectorStoreHealth)
async def vector_db_health(container: Container = Depends(get_container)) -> VectorStoreHealth:
    try:
        collections = await container.vector_store.list_collections()
    except Exception as exc:
        logger.error(f"Vector store health check failed: {exc}")
        raise HTTPException(status_code=503, detail=str(exc))
    return VectorStoreHealth(status="ok", collections=collections, collection_count=len(collections))
