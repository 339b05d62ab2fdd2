from fastapi import APIRouter
from api.endpoints import evaluate, health, result, upload

api_router = APIRouter()
for endpoint, tag in ((upload, "documents"), (evaluate, "evaluation"), (result, "evaluation"), (health, "health")):
    api_router.include_router(endpoint.router, tags=[tag])
