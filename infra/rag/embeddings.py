import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from app.settings import Settings
from domain.errors import ProviderNotConfiguredError, ProviderResponseError

logger = logging.getLogger(__name__)

EMBED_MAX_ATTEMPTS = 3
EMBED_BACKOFF_STEP = 2.0


def _is_network_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    message = str(exc).lower()
    return "timeout" in message or "network" in message


def parse_embeddings(data: Any, expected: int) -> List[List[float]]:
    items = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list) or len(items) != expected:
        raise ProviderResponseError(f"embedding response should carry {expected} vectors")
    ordered = sorted(items, key=lambda item: item.get("index", 0) if isinstance(item, dict) else 0)
    vectors = []
    for item in ordered:
        vector = item.get("embedding") if isinstance(item, dict) else None
        if not isinstance(vector, list) or not vector:
            raise ProviderResponseError("embedding item has no vector")
        vectors.append([float(v) for v in vector])
    return vectors


class EmbeddingClient:
    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = settings.OPENAI_API_KEY
        self.base_url = settings.OPENAI_BASE_URL.rstrip("/")
        self.model = settings.EMBEDDING_MODEL
        self._http = http_client
        self._sleep = sleep

    async def _request(self, texts: List[str]) -> List[List[float]]:
        if not self.api_key:
            raise ProviderNotConfiguredError("Embedding API key not configured")
        url = f"{self.base_url}/embeddings"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {"model": self.model, "input": texts}
        if self._http is not None:
            r = await self._http.post(url, headers=headers, json=payload, timeout=30)
        else:
            async with httpx.AsyncClient(timeout=30) as client:
                r = await client.post(url, headers=headers, json=payload)
        r.raise_for_status()
        return parse_embeddings(r.json(), expected=len(texts))

    async def embed(self, text: str) -> List[float]:
        for attempt in range(1, EMBED_MAX_ATTEMPTS + 1):
            try:
                [vector] = await self._request([text])
                return vector
            except Exception as exc:
                if attempt < EMBED_MAX_ATTEMPTS and _is_network_error(exc):
                    delay = attempt * EMBED_BACKOFF_STEP
                    logger.warning(f"Embedding attempt {attempt} failed, retrying in {delay:.0f}s: {exc}")
                    await self._sleep(delay)
                    continue
                logger.error(f"Failed to generate embedding (attempt {attempt}): {exc}")
                raise
        raise RuntimeError("Unexpected retry exhaustion")
