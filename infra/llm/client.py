import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from app.settings import Settings
from domain.errors import ProviderNotConfiguredError, ProviderResponseError, SchemaInvalidError
from domain.models import UsageStats
from infra.llm.retry import EscalationPolicy, ModelChoice, RetryPolicy
from infra.llm.schemas import (
    CVEvaluationOutput,
    CVStructureOutput,
    ProjectEvaluationOutput,
    ProjectStructureOutput,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

SCORING_TEMPERATURE = 0.3
FALLBACK_TEMPERATURE = 0.5
STRUCTURING_TEMPERATURE = 0.2

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)


@dataclass(frozen=True)
class ProviderEndpoint:
    name: str
    base_url: str
    api_key: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class ChatCompletion:
    content: str
    total_tokens: int
    model: str


def select_provider(settings: Settings) -> Optional[ProviderEndpoint]:
    if settings.OPENAI_API_KEY:
        return ProviderEndpoint("openai", settings.OPENAI_BASE_URL, settings.OPENAI_API_KEY)
    if settings.OPENROUTER_API_KEY:
        return ProviderEndpoint(
            "openrouter",
            settings.OPENROUTER_BASE_URL,
            settings.OPENROUTER_API_KEY,
            {"HTTP-Referer": "http://localhost", "X-Title": settings.APP_NAME},
        )
    return None


def parse_chat_completion(data: Any) -> ChatCompletion:
    """Map an OpenAI-compatible chat completion body to ``ChatCompletion``."""
    if not isinstance(data, dict):
        raise ProviderResponseError("chat completion body is not an object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise ProviderResponseError("chat completion has no choices")
    message = choices[0].get("message")
    if not isinstance(message, dict):
        raise ProviderResponseError("chat completion choice has no message")
    content = message.get("content")
    if content is None:
        content = ""
    if not isinstance(content, str):
        raise ProviderResponseError("chat completion content is not a string")
    usage = data.get("usage")
    tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
    return ChatCompletion(content=content, total_tokens=int(tokens or 0), model=str(data.get("model", "")))


def validate_llm_response(raw_text: str, model: Type[T]) -> T:
    if not raw_text or not raw_text.strip():
        raise SchemaInvalidError("Model returned empty response")
    cleaned = _FENCE_RE.sub("", raw_text.strip())
    try:
        return model.model_validate_json(cleaned)
    except ValidationError as exc:
        raise SchemaInvalidError(
            f"LLM response failed {model.__name__} validation ({exc.error_count()} errors)") from exc


def _schema_instructions(schema: Type[BaseModel]) -> str:
    return (
        "Return ONLY a JSON object that conforms to this JSON schema:\n"
        + json.dumps(schema.model_json_schema())
    )


class GenerationClient:
    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        self.provider = select_provider(settings)
        self.primary_model = settings.PRIMARY_MODEL
        self.fast_model = settings.FAST_MODEL
        self.timeout = settings.LLM_TIMEOUT_SECONDS
        self.retry = retry or RetryPolicy(max_attempts=settings.LLM_MAX_ATTEMPTS)
        self._http = http_client
        if self.provider is None:
            logger.warning("No LLM provider API key configured")

    async def _post(self, payload: Dict) -> Any:
        if self.provider is None:
            raise ProviderNotConfiguredError("No LLM provider configured")
        url = f"{self.provider.base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self.provider.api_key}", **self.provider.headers}
        if self._http is not None:
            response = await self._http.post(url, headers=headers, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, headers=headers, json=payload)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderResponseError("provider returned a non-JSON body") from exc

    async def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
        usage: Optional[UsageStats],
    ) -> ChatCompletion:
        payload: Dict[str, Any] = {
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        completion = parse_chat_completion(await self._post(payload))
        if usage is not None:
            usage.llm_calls_count += 1
            usage.total_tokens_used += completion.total_tokens
        return completion

    @staticmethod
    def _retry_counter(usage: Optional[UsageStats]):
        def _on_retry(attempt: int, exc: BaseException) -> None:
            if usage is not None:
                usage.retry_count += 1
        return _on_retry

    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = SCORING_TEMPERATURE,
        max_tokens: int = 2000,
        model: Optional[str] = None,
        usage: Optional[UsageStats] = None,
    ) -> str:
        async def call() -> str:
            completion = await self._complete(
                system_prompt, user_prompt,
                model=model or self.primary_model,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=False,
                usage=usage,
            )
            return completion.content

        return await self.retry.run(call, on_retry=self._retry_counter(usage))

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: Type[T],
        *,
        primary: Optional[ModelChoice] = None,
        fallback: Optional[ModelChoice] = None,
        max_tokens: int = 5000,
        usage: Optional[UsageStats] = None,
    ) -> T:
        """Validated structured output for ``schema``.

        A single schema-invalid primary response escalates straight to the
        fallback model; transient provider errors are retried around the pair.
        """
        escalation = EscalationPolicy(
            primary or ModelChoice(self.primary_model, SCORING_TEMPERATURE),
            fallback or ModelChoice(self.fast_model, FALLBACK_TEMPERATURE),
        )
        system = f"{system_prompt}\n\n{_schema_instructions(schema)}"

        async def attempt(choice: ModelChoice) -> T:
            completion = await self._complete(
                system, user_prompt,
                model=choice.model,
                temperature=choice.temperature,
                max_tokens=max_tokens,
                json_mode=True,
                usage=usage,
            )
            return validate_llm_response(completion.content, schema)

        def on_escalate(exc: SchemaInvalidError) -> None:
            if usage is not None:
                usage.fallback_count += 1
                usage.retry_count += 1

        return await self.retry.run(
            lambda: escalation.run(attempt, on_escalate),
            on_retry=self._retry_counter(usage),
        )

    async def generate_cv_evaluation(
        self, system_prompt: str, user_prompt: str, usage: Optional[UsageStats] = None
    ) -> CVEvaluationOutput:
        return await self.generate_structured(system_prompt, user_prompt, CVEvaluationOutput, usage=usage)

    async def generate_project_evaluation(
        self, system_prompt: str, user_prompt: str, usage: Optional[UsageStats] = None
    ) -> ProjectEvaluationOutput:
        return await self.generate_structured(system_prompt, user_prompt, ProjectEvaluationOutput, usage=usage)

    async def generate_cv_structure(
        self, system_prompt: str, user_prompt: str, usage: Optional[UsageStats] = None
    ) -> CVStructureOutput:
        # structuring is cheap enrichment: fast model for both tiers
        return await self.generate_structured(
            system_prompt, user_prompt, CVStructureOutput,
            primary=ModelChoice(self.fast_model, STRUCTURING_TEMPERATURE),
            fallback=ModelChoice(self.fast_model, SCORING_TEMPERATURE),
            max_tokens=4000,
            usage=usage,
        )

    async def generate_project_structure(
        self, system_prompt: str, user_prompt: str, usage: Optional[UsageStats] = None
    ) -> ProjectStructureOutput:
        return await self.generate_structured(
            system_prompt, user_prompt, ProjectStructureOutput,
            primary=ModelChoice(self.fast_model, STRUCTURING_TEMPERATURE),
            fallback=ModelChoice(self.fast_model, SCORING_TEMPERATURE),
            max_tokens=3000,
            usage=usage,
        )
