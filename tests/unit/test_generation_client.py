import asyncio
import json

import httpx
import pytest

from conftest import CV_EVALUATION, chat_body, make_settings
from domain.errors import ProviderNotConfiguredError, ProviderResponseError, SchemaInvalidError
from domain.models import UsageStats
from infra.llm.client import GenerationClient, parse_chat_completion, select_provider, validate_llm_response
from infra.llm.retry import RetryPolicy
from infra.llm.schemas import CVEvaluationOutput, ProjectStructureOutput


def _client(handler, sleeps, **overrides) -> GenerationClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GenerationClient(make_settings(**overrides), http_client=http, retry=RetryPolicy(sleep=sleeps))


def test_parse_chat_completion_reads_content_and_tokens():
    completion = parse_chat_completion(chat_body("hello", model="gpt-4o-mini", tokens=42))
    assert completion.content == "hello"
    assert completion.total_tokens == 42
    assert completion.model == "gpt-4o-mini"


@pytest.mark.parametrize("body", [
    [],
    {"choices": []},
    {"choices": [{"index": 0}]},
    {"choices": [{"message": {"content": 12}}]},
])
def test_parse_chat_completion_rejects_unexpected_shapes(body):
    with pytest.raises(ProviderResponseError):
        parse_chat_completion(body)


def test_validate_llm_response_strips_code_fences():
    raw = "```json\n" + json.dumps({"structure": "a", "implementation": "b", "documentation": "c"}) + "\n```"
    parsed = validate_llm_response(raw, ProjectStructureOutput)
    assert parsed.implementation == "b"


@pytest.mark.parametrize("raw", ["", "   ", "Sure! Here is the evaluation.", '{"structure": "only"}'])
def test_validate_llm_response_raises_schema_invalid(raw):
    with pytest.raises(SchemaInvalidError):
        validate_llm_response(raw, ProjectStructureOutput)


def test_select_provider_prefers_openai_then_openrouter():
    assert select_provider(make_settings()).name == "openai"

    openrouter = select_provider(make_settings(OPENAI_API_KEY=None, OPENROUTER_API_KEY="or-key"))
    assert openrouter.name == "openrouter"
    assert openrouter.base_url == "https://openrouter.ai/api/v1"
    assert "HTTP-Referer" in openrouter.headers

    assert select_provider(make_settings(OPENAI_API_KEY=None, OPENROUTER_API_KEY=None)) is None


def test_generate_text_posts_chat_completion_and_counts_usage(sleeps):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json=chat_body("A fine summary.", tokens=25))

    client = _client(handler, sleeps)
    usage = UsageStats()
    text = asyncio.run(client.generate_text("system", "user", temperature=0.4, max_tokens=2000, usage=usage))

    assert text == "A fine summary."
    body = json.loads(requests[0].content)
    assert requests[0].url.path.endswith("/chat/completions")
    assert requests[0].headers["Authorization"] == "Bearer sk-test"
    assert body["model"] == "gpt-4o"
    assert body["temperature"] == 0.4
    assert "response_format" not in body
    assert usage.llm_calls_count == 1
    assert usage.total_tokens_used == 25


def test_generate_structured_escalates_to_fast_model(sleeps):
    bodies = []
    replies = ["I think the candidate is great", json.dumps(CV_EVALUATION)]

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=chat_body(replies.pop(0)))

    client = _client(handler, sleeps)
    usage = UsageStats()
    result = asyncio.run(client.generate_cv_evaluation("Evaluate the CV.", "CV text", usage=usage))

    assert isinstance(result, CVEvaluationOutput)
    assert result.technical_skills_match.score == 4
    assert [(b["model"], b["temperature"]) for b in bodies] == [("gpt-4o", 0.3), ("gpt-4o-mini", 0.5)]
    assert bodies[0]["response_format"] == {"type": "json_object"}
    assert "JSON schema" in bodies[0]["messages"][0]["content"]
    assert usage.fallback_count == 1
    assert usage.retry_count == 1
    assert usage.llm_calls_count == 2
    assert sleeps.delays == []


def test_generate_structured_retries_transient_status(sleeps):
    replies = [httpx.Response(429, json={"error": "rate limited"}),
               httpx.Response(200, json=chat_body(json.dumps(CV_EVALUATION)))]

    client = _client(lambda request: replies.pop(0), sleeps)
    usage = UsageStats()
    asyncio.run(client.generate_cv_evaluation("Evaluate the CV.", "CV text", usage=usage))

    assert usage.retry_count == 1
    assert usage.fallback_count == 0
    assert len(sleeps.delays) == 1


def test_generate_structured_fails_when_both_tiers_invalid(sleeps):
    client = _client(lambda request: httpx.Response(200, json=chat_body("no json here")), sleeps)
    with pytest.raises(SchemaInvalidError) as exc:
        asyncio.run(client.generate_cv_evaluation("Evaluate the CV.", "CV text"))
    assert "both primary and fallback" in str(exc.value)


def test_missing_provider_raises_not_configured(sleeps):
    client = _client(lambda request: httpx.Response(500), sleeps, OPENAI_API_KEY=None, OPENROUTER_API_KEY=None)
    with pytest.raises(ProviderNotConfiguredError):
        asyncio.run(client.generate_text("system", "user"))
