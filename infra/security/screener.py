"""Content-safety screening for uploaded files, outbound prompts and model responses.

Backed by an OpenAI-compatible moderation endpoint. Screening fails open: a
provider outage is logged and treated as "not blocked".
"""
import asyncio
import logging
from typing import Any, Callable, List, Optional

import httpx

from app.settings import Settings
from domain.errors import DocumentValidationError, ProviderResponseError
from domain.models import ScreeningResult
from infra.pdf.parser import text_from_bytes

logger = logging.getLogger(__name__)

MODERATION_INPUT_LIMIT = 32000


def parse_moderation(data: Any, context: str) -> ScreeningResult:
    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list) or not results:
        raise ProviderResponseError("moderation response has no results")
    categories: List[str] = []
    blocked = False
    for result in results:
        if not isinstance(result, dict) or not isinstance(result.get("flagged"), bool):
            raise ProviderResponseError("moderation result has no flagged verdict")
        if not result["flagged"]:
            continue
        blocked = True
        hits = result.get("categories") or {}
        categories.extend(name for name, hit in hits.items() if hit and name not in categories)
    reasons = [f"{context} flagged for {c}" for c in categories]
    if blocked and not reasons:
        reasons = [f"{context} flagged by moderation"]
    return ScreeningResult(blocked=blocked, reasons=reasons, categories=categories)


class SafetyScreener:
    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        extract_text: Callable[[bytes], str] = text_from_bytes,
    ):
        self.api_key = settings.OPENAI_API_KEY
        self.enabled = settings.SAFETY_SCREENING_ENABLED and bool(self.api_key)
        self.base_url = settings.OPENAI_BASE_URL.rstrip("/")
        self.model = settings.MODERATION_MODEL
        self._http = http_client
        self._extract_text = extract_text
        logger.info(f"Safety screening enabled: {self.enabled}")
        if settings.SAFETY_SCREENING_ENABLED and not self.api_key:
            logger.warning("Safety screening enabled but no API key configured; screening is skipped")

    async def _moderate(self, text: str) -> Any:
        url = f"{self.base_url}/moderations"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {"model": self.model, "input": text[:MODERATION_INPUT_LIMIT]}
        if self._http is not None:
            r = await self._http.post(url, headers=headers, json=payload, timeout=30)
        else:
            async with httpx.AsyncClient(timeout=30) as client:
                r = await client.post(url, headers=headers, json=payload)
        r.raise_for_status()
        return r.json()

    async def _screen(self, text: str, context: str) -> ScreeningResult:
        if not self.enabled:
            return ScreeningResult()
        if not text or not text.strip():
            logger.debug(f"{context} is empty, skipping screening")
            return ScreeningResult()
        try:
            result = parse_moderation(await self._moderate(text), context)
        except (httpx.HTTPError, ValueError, ProviderResponseError) as exc:
            logger.error(f"Safety screening of {context} failed, allowing: {exc}")
            return ScreeningResult()
        if result.blocked:
            logger.warning(f"{context} blocked by safety screening: {result.reasons}")
        return result

    async def screen_file(self, data: bytes, text: Optional[str] = None) -> ScreeningResult:
        """Screen an uploaded file. ``text`` skips extraction when the caller already has it."""
        if not self.enabled:
            return ScreeningResult()
        if text is None:
            try:
                text = await asyncio.to_thread(self._extract_text, data)
            except DocumentValidationError as exc:
                logger.error(f"Could not read file for safety screening, allowing: {exc}")
                return ScreeningResult()
        return await self._screen(text, "file")

    async def screen_prompt(self, prompt: str) -> ScreeningResult:
        return await self._screen(prompt, "prompt")

    async def screen_response(self, response: str) -> ScreeningResult:
        return await self._screen(response, "response")
